"""Property lifecycle: creation with agent matching, status, seller, deletion."""

from typing import Optional, Union

from src.models.activity import ActivityLogEntry
from src.models.events import NotificationEvent
from src.models.property import Property, PropertyDraft, PropertyStatus
from src.models.user import Actor, UserRole
from src.services.activity_ledger import ActivityLedger
from src.services.authorization import property_ownership, require
from src.services.collaborators import ExtractionInput, StructuredExtraction
from src.services.lead_allocator import LeadAllocator
from src.services.outcome import Outcome, outcome
from src.services.storage import Storage
from src.utils.errors import ExternalServiceError, NotFoundError, StateConflictError, ValidationError
from src.utils.ids import generate_id, utcnow
from src.utils.logging import get_structured_logger, get_correlation_id, log_timing, mask_user_id

logger = get_structured_logger(__name__)


def property_parties(prop: Property) -> list[Optional[str]]:
    """Everyone who follows a property's changes."""
    return [prop.created_by, prop.seller_id, prop.agent_id]


class PropertyService:
    """Creates and maintains property records."""

    def __init__(
        self,
        storage: Storage,
        ledger: ActivityLedger,
        allocator: LeadAllocator,
        extractor: Optional[StructuredExtraction] = None,
    ):
        self.storage = storage
        self.ledger = ledger
        self.allocator = allocator
        self.extractor = extractor

    async def get(self, property_id: str) -> Property:
        prop = await self.storage.get_property(property_id)
        if prop is None:
            raise NotFoundError(f"Property not found: {property_id}")
        return prop

    @outcome
    async def extract_details(self, actor: Actor, source: Union[ExtractionInput, str]) -> PropertyDraft:
        """Best-effort prefill from an address, listing URL or photos."""
        require(actor, "property.create")
        if self.extractor is None:
            return PropertyDraft()
        return await self.extractor.extract(source)

    @outcome
    async def create_property(self, actor: Actor, draft: PropertyDraft) -> Outcome:
        """Create a property and hand it to the best matching agents.

        Matching never fails creation: with no agents, or a failed match, the
        property is stored without an agent.
        """
        require(actor, "property.create")
        if not draft.address or not draft.address.strip():
            raise ValidationError("Address is required")

        seller_id = draft.seller_id
        if seller_id is None and draft.seller_email:
            seller_id = await self._seller_by_email(draft.seller_email)

        now = utcnow()
        prop = Property(
            id=generate_id(),
            address=draft.address.strip(),
            city=draft.city,
            state=draft.state,
            zip=draft.zip,
            created_by=actor.id,
            seller_id=seller_id,
            price=draft.price,
            property_type=draft.property_type,
            seller_email=draft.seller_email,
            listing_agent_name=draft.listing_agent_name,
            listing_agent_email=draft.listing_agent_email,
            created_at=now,
            updated_at=now,
        )
        with log_timing("insert_property", logger=logger, correlation_id=get_correlation_id()):
            prop = await self.storage.insert_property(prop)
        await self.ledger.record(prop.id, actor.id, "Property created", address=prop.address)

        events = []
        try:
            candidates = await self.allocator.match_agents(prop)
            seeded = await self.allocator.assign_and_seed_leads(prop, candidates)
            prop = seeded.property
            events.extend(seeded.events)
        except ExternalServiceError as e:
            logger.warning(
                "Agent matching failed, property left unassigned",
                correlation_id=get_correlation_id(),
                property_id=prop.id,
                error=str(e),
            )

        logger.info(
            "Property created",
            correlation_id=get_correlation_id(),
            property_id=prop.id,
            buyer_id=mask_user_id(actor.id),
            has_seller=bool(prop.seller_id),
            agent_id=mask_user_id(prop.agent_id),
        )
        events.insert(0, NotificationEvent.build(
            [prop.created_by, prop.seller_id],
            f"Property added: {prop.address}",
            property_id=prop.id,
            action="property_created",
        ))
        return Outcome.success(prop, events=events)

    @outcome
    async def delete_property(self, actor: Actor, property_id: str) -> Outcome:
        """Delete an unassigned property and its leads."""
        require(actor, "property.delete")
        prop = await self.get(property_id)
        require(actor, "property.delete", property_ownership(prop).only(UserRole.BUYER))
        if prop.agent_id:
            raise StateConflictError("Cannot delete a property with an assigned agent")
        if await self.storage.list_viewing_requests(property_id=property_id):
            raise StateConflictError("Cannot delete a property with viewing requests")
        if await self.storage.list_agreements(property_id=property_id):
            raise StateConflictError("Cannot delete a property with agreements")

        removed = await self.storage.delete_leads_for_property(property_id)
        await self.storage.delete_property(property_id)
        logger.info("Property deleted", property_id=property_id, leads_removed=removed)
        event = NotificationEvent.build(
            [prop.created_by, prop.seller_id],
            f"Property removed: {prop.address}",
            property_id=property_id,
            action="property_deleted",
        )
        return Outcome.success(prop, events=[event])

    @outcome
    async def update_status(self, actor: Actor, property_id: str, status: PropertyStatus) -> Outcome:
        require(actor, "property.update_status")
        prop = await self.get(property_id)
        require(actor, "property.update_status", property_ownership(prop))
        status = PropertyStatus(status)
        if prop.status == status:
            return Outcome.success(prop)

        previous = prop.status
        prop = await self.storage.update_property(property_id, {"status": status, "updated_at": utcnow()})
        await self.ledger.record(
            property_id, actor.id, "Property status changed", previous=previous.value, status=status.value,
        )
        event = NotificationEvent.build(
            property_parties(prop),
            f"{prop.address} is now {status.value}",
            property_id=property_id,
            action="status_changed",
        )
        return Outcome.success(prop, events=[event])

    @outcome
    async def set_seller(self, actor: Actor, property_id: str, seller_id: str) -> Outcome:
        """Attach a seller account to a property."""
        require(actor, "property.set_seller")
        prop = await self.get(property_id)
        require(actor, "property.set_seller", property_ownership(prop))

        seller = await self.storage.get_user(seller_id)
        if seller is None or seller.role != UserRole.SELLER:
            raise ValidationError("Seller must be an existing seller account")

        prop = await self.storage.update_property(property_id, {"seller_id": seller_id, "updated_at": utcnow()})
        await self.ledger.record(property_id, actor.id, "Seller added", seller_id=seller_id)
        event = NotificationEvent.build(
            property_parties(prop),
            f"Seller linked to {prop.address}",
            property_id=property_id,
            action="seller_linked",
        )
        return Outcome.success(prop, events=[event])

    @outcome
    async def activity_for(self, actor: Actor, property_id: str) -> list[ActivityLogEntry]:
        require(actor, "property.view_activity")
        prop = await self.get(property_id)
        require(actor, "property.view_activity", property_ownership(prop))
        return await self.ledger.history(property_id)

    async def _seller_by_email(self, email: str) -> Optional[str]:
        email = email.strip().lower()
        for seller in await self.storage.list_users(UserRole.SELLER):
            if (seller.email or "").lower() == email:
                return seller.id
        return None
