"""Agreement signing: per-type status lifecycles, document rendering, notifications."""

import base64
import binascii
from datetime import datetime, timezone
from typing import Optional

from src.models.agreement import (
    ACTIVE_BRBC_STATUSES,
    AgencyDisclosureAgreement,
    Agreement,
    AgentReferralAgreement,
    AgreementStatus,
    AgreementType,
    GlobalBrbcAgreement,
    SignatureSlot,
    StandardAgreement,
)
from src.models.events import NotificationEvent
from src.models.property import Property
from src.models.user import Actor, UserRole
from src.models.viewing_request import ViewingStatus
from src.services.activity_ledger import ActivityLedger
from src.services.authorization import agreement_ownership, ownership, require
from src.services.collaborators import BlobStore, DocumentRenderer
from src.services.outcome import Outcome, outcome
from src.services.storage import Storage
from src.utils.errors import (
    ExternalServiceError,
    HomeBridgeError,
    NotFoundError,
    StateConflictError,
    StorageError,
    ValidationError,
)
from src.utils.ids import generate_id, utcnow
from src.utils.logging import get_structured_logger, get_correlation_id, log_timing, mask_user_id

logger = get_structured_logger(__name__)

SLOT_ROLES: dict[SignatureSlot, UserRole] = {
    SignatureSlot.BUYER: UserRole.BUYER,
    SignatureSlot.AGENT: UserRole.AGENT,
    SignatureSlot.SELLER: UserRole.SELLER,
}

LABELS: dict[AgreementType, str] = {
    AgreementType.AGENCY_DISCLOSURE: "Agency disclosure",
    AgreementType.STANDARD: "Buyer representation agreement",
    AgreementType.GLOBAL_BRBC: "BRBC",
    AgreementType.AGENT_REFERRAL: "Agent referral agreement",
}

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def decode_data_url(signature: str) -> bytes:
    """Image bytes from a `data:image/...;base64,` URL."""
    header, sep, encoded = (signature or "").partition(",")
    if not sep or not header.startswith("data:image/") or ";base64" not in header:
        raise ValidationError("Signature must be a base64 image data URL")
    try:
        image = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Signature is not valid base64: {e}")
    if not image:
        raise ValidationError("Signature image is empty")
    return image


def check_signature(signature: str) -> str:
    """Signatures arrive as base64 image data URLs; reject them before any write."""
    decode_data_url(signature)
    return signature


async def current_agreement(
    storage: Storage,
    property_id: str,
    type: AgreementType,
    buyer_id: Optional[str] = None,
) -> Optional[Agreement]:
    """Most recent agreement of a type on a property; superseded rows are ignored."""
    agreements = await storage.list_agreements(property_id=property_id, type=type, buyer_id=buyer_id)
    if not agreements:
        return None
    return max(enumerate(agreements), key=lambda pair: (pair[1].created_at or _EPOCH, pair[0]))[1]


async def has_active_brbc(storage: Storage, buyer_id: str, agent_id: str) -> bool:
    """Whether the buyer holds a signed or completed BRBC with the agent."""
    agreements = await storage.list_agreements(
        type=AgreementType.GLOBAL_BRBC, buyer_id=buyer_id, agent_id=agent_id
    )
    return any(a.status in ACTIVE_BRBC_STATUSES for a in agreements)


def next_status(agreement: Agreement, slot: SignatureSlot, viewing_pending: bool) -> AgreementStatus:
    """Status after writing `slot` on `agreement` (signature already applied)."""
    signed_buyer = agreement.has_signature(SignatureSlot.BUYER)
    signed_agent = agreement.has_signature(SignatureSlot.AGENT)

    if agreement.type == AgreementType.AGENCY_DISCLOSURE:
        if slot == SignatureSlot.BUYER:
            return AgreementStatus.SIGNED_BY_BUYER
        if slot == SignatureSlot.AGENT:
            return AgreementStatus.PENDING if signed_buyer else AgreementStatus.PENDING_BUYER
        if signed_buyer and signed_agent and not viewing_pending:
            return AgreementStatus.COMPLETED
        return AgreementStatus.SIGNED_BY_SELLER

    if agreement.type == AgreementType.STANDARD:
        if slot == SignatureSlot.BUYER:
            return AgreementStatus.SIGNED_BUYER
        if slot == SignatureSlot.AGENT:
            return AgreementStatus.SIGNED_BUYER if signed_buyer else AgreementStatus.PENDING_BUYER
        if not signed_buyer:
            raise StateConflictError("The buyer must sign before the agreement can be completed")
        return AgreementStatus.COMPLETED

    if agreement.type == AgreementType.GLOBAL_BRBC:
        if slot == SignatureSlot.BUYER:
            return AgreementStatus.SIGNED_BY_BUYER
        if not signed_buyer:
            raise StateConflictError("The buyer must sign the BRBC first")
        return AgreementStatus.COMPLETED

    return AgreementStatus.COMPLETED


class AgreementMachine:
    """Signature capture and status lifecycle for every agreement type."""

    def __init__(
        self,
        storage: Storage,
        ledger: ActivityLedger,
        renderer: Optional[DocumentRenderer] = None,
        blob_store: Optional[BlobStore] = None,
    ):
        self.storage = storage
        self.ledger = ledger
        self.renderer = renderer
        self.blob_store = blob_store

    # Queries

    async def current_agreement(
        self, property_id: str, type: AgreementType, buyer_id: Optional[str] = None
    ) -> Optional[Agreement]:
        return await current_agreement(self.storage, property_id, AgreementType(type), buyer_id)

    async def has_active_brbc(self, buyer_id: str, agent_id: str) -> bool:
        return await has_active_brbc(self.storage, buyer_id, agent_id)

    # Creation

    @outcome
    async def create_agency_disclosure(
        self, actor: Actor, property_id: str, buyer_id: Optional[str] = None
    ) -> Outcome:
        """Open (or return the open) disclosure for a buyer on a property."""
        require(actor, "agreement.create_disclosure")
        prop = await self._property(property_id)
        if not prop.agent_id:
            raise StateConflictError("An agent must be assigned before an agency disclosure")

        buyer_id = actor.id if actor.role == UserRole.BUYER else buyer_id
        if not buyer_id:
            raise ValidationError("buyer_id is required")
        require(actor, "agreement.create_disclosure", ownership(buyer=buyer_id, agent=prop.agent_id))

        existing = await current_agreement(self.storage, prop.id, AgreementType.AGENCY_DISCLOSURE, buyer_id)
        if existing is not None and existing.status != AgreementStatus.REJECTED:
            return Outcome.success(existing)

        now = utcnow()
        agreement = await self.storage.insert_agreement(AgencyDisclosureAgreement(
            id=generate_id(),
            property_id=prop.id,
            buyer_id=buyer_id,
            agent_id=prop.agent_id,
            status=AgreementStatus.DRAFT,
            created_at=now,
            updated_at=now,
        ))
        await self.ledger.record(prop.id, actor.id, "Agency disclosure started", agreement_id=agreement.id)
        return Outcome.success(agreement, events=[self._event(agreement, prop, actor, "Agency disclosure started")])

    @outcome
    async def create_standard(
        self, actor: Actor, property_id: str, buyer_id: str, signature: Optional[str] = None
    ) -> Outcome:
        """Agent or admin drafts a buyer representation agreement, optionally signing it."""
        require(actor, "agreement.create_standard")
        prop = await self._property(property_id)
        if not prop.agent_id:
            raise StateConflictError("An agent must be assigned before a representation agreement")
        require(actor, "agreement.create_standard", ownership(agent=prop.agent_id))
        if signature is not None:
            check_signature(signature)

        now = utcnow()
        agreement = await self.storage.insert_agreement(StandardAgreement(
            id=generate_id(),
            property_id=prop.id,
            buyer_id=buyer_id,
            agent_id=prop.agent_id,
            status=AgreementStatus.DRAFT,
            created_at=now,
            updated_at=now,
        ))
        await self.ledger.record(prop.id, actor.id, "Representation agreement created", agreement_id=agreement.id)
        if signature is None:
            return Outcome.success(agreement, events=[self._event(agreement, prop, actor, "Representation agreement created")])
        return await self._sign(actor, agreement, SignatureSlot.AGENT, signature, prop)

    @outcome
    async def sign_global_brbc(self, actor: Actor, agent_id: str, signature: str) -> Outcome:
        """Buyer signs a BRBC with an agent. A completed pair refuses a second one."""
        require(actor, "agreement.create_brbc")
        check_signature(signature)

        agent = await self.storage.get_user(agent_id)
        if agent is None or agent.role != UserRole.AGENT:
            raise NotFoundError(f"Agent not found: {agent_id}")

        pair = await self.storage.list_agreements(
            type=AgreementType.GLOBAL_BRBC, buyer_id=actor.id, agent_id=agent_id
        )
        completed = next((a for a in pair if a.is_completed), None)
        if completed is not None:
            raise StateConflictError(
                "A completed BRBC already exists with this agent", existing_id=completed.id
            )

        open_brbc = next((a for a in reversed(pair) if a.status != AgreementStatus.REJECTED), None)
        if open_brbc is None:
            now = utcnow()
            open_brbc = await self.storage.insert_agreement(GlobalBrbcAgreement(
                id=generate_id(),
                buyer_id=actor.id,
                agent_id=agent_id,
                buyer_signature=signature,
                status=AgreementStatus.SIGNED_BY_BUYER,
                created_at=now,
                updated_at=now,
            ))
        return await self._sign(actor, open_brbc, SignatureSlot.BUYER, signature, None)

    @outcome
    async def submit_agent_referral(self, actor: Actor, signature: str) -> Outcome:
        """Agent signs the referral agreement; repeat submissions return the existing record."""
        require(actor, "agreement.create_referral")
        check_signature(signature)

        existing = await self.storage.list_agreements(type=AgreementType.AGENT_REFERRAL, agent_id=actor.id)
        if existing:
            return Outcome.success(existing[0])

        now = utcnow()
        agreement = await self.storage.insert_agreement(AgentReferralAgreement(
            id=generate_id(),
            agent_id=actor.id,
            agent_signature=signature,
            status=AgreementStatus.COMPLETED,
            created_at=now,
            updated_at=now,
        ))
        agreement, deferred = await self._materialize(agreement)
        logger.info("Agent referral agreement completed", agreement_id=agreement.id, agent_id=mask_user_id(actor.id))
        return Outcome.success(agreement, deferred_error=deferred)

    # Mutation

    @outcome
    async def sign(
        self, actor: Actor, agreement_id: str, signature: str, slot: Optional[SignatureSlot] = None
    ) -> Outcome:
        """Write the actor's signature slot and advance the agreement's status."""
        require(actor, "agreement.sign")
        check_signature(signature)
        agreement = await self._agreement(agreement_id)
        prop = await self._property(agreement.property_id) if agreement.property_id else None

        if slot is None:
            slot = next((s for s, role in SLOT_ROLES.items() if role == actor.role), None)
            if slot is None:
                raise ValidationError("slot is required when signing as admin")
        slot = SignatureSlot(slot)
        if slot not in agreement.slots:
            raise ValidationError(f"{agreement.type.value} has no {slot.value} signature")

        require(actor, "agreement.sign", agreement_ownership(agreement, prop).only(SLOT_ROLES[slot]))
        return await self._sign(actor, agreement, slot, signature, prop)

    @outcome
    async def save_edited_document(self, actor: Actor, agreement_id: str, data: bytes) -> Outcome:
        """Store raw edited disclosure bytes; they seed the next rendering."""
        require(actor, "agreement.edit")
        agreement = await self._agreement(agreement_id)
        if not isinstance(agreement, AgencyDisclosureAgreement):
            raise ValidationError("Only agency disclosures accept edited documents")
        if not data:
            raise ValidationError("Document bytes are required")
        prop = await self._property(agreement.property_id)
        owners = agreement_ownership(agreement, prop)
        require(actor, "agreement.edit", ownership(
            buyer=owners.for_role(UserRole.BUYER), agent=owners.for_role(UserRole.AGENT)
        ))
        if agreement.is_completed:
            raise StateConflictError("Completed agreements cannot be edited")

        agreement = await self.storage.update_agreement(
            agreement.id, {"edited_document": data, "updated_at": utcnow()}
        )
        agreement, deferred = await self._materialize(agreement)
        await self.ledger.record(prop.id, actor.id, "Agency disclosure edited", agreement_id=agreement.id)
        return Outcome.success(agreement, deferred_error=deferred)

    @outcome
    async def rematerialize(self, actor: Actor, agreement_id: str) -> Agreement:
        """Retry rendering after a deferred failure."""
        require(actor, "agreement.render")
        agreement = await self._agreement(agreement_id)
        prop = await self._property(agreement.property_id) if agreement.property_id else None
        require(actor, "agreement.render", agreement_ownership(agreement, prop))
        agreement, deferred = await self._materialize(agreement)
        if deferred is not None:
            raise deferred
        return agreement

    @outcome
    async def document(self, actor: Actor, agreement_id: str) -> bytes:
        """Rendered document bytes for a party to the agreement."""
        require(actor, "agreement.render")
        agreement = await self._agreement(agreement_id)
        prop = await self._property(agreement.property_id) if agreement.property_id else None
        require(actor, "agreement.render", agreement_ownership(agreement, prop))
        if not agreement.document_ref or self.blob_store is None:
            raise NotFoundError("No rendered document yet")
        return await self.blob_store.load(agreement.document_ref)

    @outcome
    async def override_status(self, actor: Actor, agreement_id: str, status: AgreementStatus) -> Outcome:
        """Admin sets a status directly."""
        require(actor, "agreement.override")
        agreement = await self._agreement(agreement_id)
        status = AgreementStatus(status)
        if status not in agreement.statuses:
            raise ValidationError(f"{status.value} is not a {agreement.type.value} status")
        if status == AgreementStatus.COMPLETED:
            if isinstance(agreement, GlobalBrbcAgreement):
                await self._ensure_sole_completed_brbc(agreement)
            if isinstance(agreement, AgencyDisclosureAgreement):
                missing = [slot.value for slot in agreement.slots if not agreement.has_signature(slot)]
                if missing:
                    raise StateConflictError(
                        f"Agency disclosure cannot be completed without {', '.join(missing)} signatures",
                        missing_signatures=missing,
                    )

        previous = agreement.status
        agreement = await self.storage.update_agreement(agreement.id, {"status": status, "updated_at": utcnow()})
        prop = await self._property(agreement.property_id) if agreement.property_id else None
        await self.ledger.record(
            agreement.property_id,
            actor.id,
            f"{LABELS[agreement.type]} status overridden",
            agreement_id=agreement.id,
            previous=previous.value,
            status=status.value,
        )
        logger.info(
            "Agreement status overridden",
            agreement_id=agreement.id,
            previous=previous.value,
            status=status.value,
        )
        return Outcome.success(
            agreement, events=[self._event(agreement, prop, actor, f"{LABELS[agreement.type]} is now {status.value}")]
        )

    # Internals

    async def _sign(
        self,
        actor: Actor,
        agreement: Agreement,
        slot: SignatureSlot,
        signature: str,
        prop: Optional[Property],
    ) -> Outcome:
        if agreement.is_completed:
            raise StateConflictError("This agreement is already completed")
        if agreement.status == AgreementStatus.REJECTED:
            raise StateConflictError("This agreement was rejected")

        signed = agreement.with_signature(slot, signature)
        viewing_pending = False
        if isinstance(agreement, AgencyDisclosureAgreement) and slot == SignatureSlot.SELLER:
            pending = await self.storage.list_viewing_requests(
                property_id=agreement.property_id, status=ViewingStatus.PENDING
            )
            viewing_pending = bool(pending)
        status = next_status(signed, slot, viewing_pending)

        if isinstance(agreement, GlobalBrbcAgreement) and status == AgreementStatus.COMPLETED:
            await self._ensure_sole_completed_brbc(agreement)

        agreement = await self.storage.update_agreement(agreement.id, {
            f"{slot.value}_signature": signature,
            "status": status,
            "updated_at": utcnow(),
        })

        label = LABELS[agreement.type]
        await self.ledger.record(
            agreement.property_id,
            actor.id,
            f"{label} signed by {slot.value}",
            agreement_id=agreement.id,
            status=status.value,
            viewing_pending=viewing_pending,
        )
        logger.info(
            "Agreement signed",
            correlation_id=get_correlation_id(),
            agreement_id=agreement.id,
            agreement_type=agreement.type.value,
            slot=slot.value,
            status=status.value,
            actor_id=mask_user_id(actor.id),
        )

        agreement, deferred = await self._materialize(agreement)
        event = self._event(agreement, prop, actor, f"{label} signed by {slot.value}: now {status.value}")
        return Outcome.success(agreement, events=[event], deferred_error=deferred)

    async def _ensure_sole_completed_brbc(self, agreement: GlobalBrbcAgreement) -> None:
        """At most one completed BRBC per (buyer, agent)."""
        pair = await self.storage.list_agreements(
            type=AgreementType.GLOBAL_BRBC, buyer_id=agreement.buyer_id, agent_id=agreement.agent_id
        )
        other = next((a for a in pair if a.is_completed and a.id != agreement.id), None)
        if other is not None:
            raise StateConflictError("A completed BRBC already exists with this agent", existing_id=other.id)

    async def _materialize(self, agreement: Agreement) -> tuple[Agreement, Optional[HomeBridgeError]]:
        """Render and store the document. Failures are returned, never raised."""
        if self.renderer is None or self.blob_store is None:
            return agreement, None
        try:
            with log_timing("materialize_agreement", logger=logger, agreement_id=agreement.id):
                prior = agreement.edited_document if isinstance(agreement, AgencyDisclosureAgreement) else None
                document = self.renderer.fill(agreement.type, agreement.field_values(), prior)
                for slot in agreement.slots:
                    signature = agreement.signature(slot)
                    if signature:
                        document = self.renderer.overlay_signature(document, signature, slot)
                reference = await self.blob_store.save(document)
        except StorageError:
            raise
        except Exception as e:
            error = e if isinstance(e, HomeBridgeError) else ExternalServiceError(f"Document rendering failed: {e}")
            logger.error(
                "Document materialization failed; signature kept",
                correlation_id=get_correlation_id(),
                agreement_id=agreement.id,
                error=str(e),
            )
            return agreement, error

        agreement = await self.storage.update_agreement(agreement.id, {"document_ref": reference})
        return agreement, None

    def _event(
        self, agreement: Agreement, prop: Optional[Property], actor: Actor, message: str
    ) -> NotificationEvent:
        """Notify the parties other than the actor."""
        parties = [
            agreement.buyer_id,
            prop.agent_id if prop else agreement.agent_id,
            prop.seller_id if prop else None,
        ]
        return NotificationEvent.build(
            [p for p in parties if p != actor.id],
            message,
            property_id=agreement.property_id,
            agreement_id=agreement.id,
            action=f"{agreement.type.value}_{agreement.status.value}",
        )

    async def _agreement(self, agreement_id: str) -> Agreement:
        agreement = await self.storage.get_agreement(agreement_id)
        if agreement is None:
            raise NotFoundError(f"Agreement not found: {agreement_id}")
        return agreement

    async def _property(self, property_id: str) -> Property:
        prop = await self.storage.get_property(property_id)
        if prop is None:
            raise NotFoundError(f"Property not found: {property_id}")
        return prop
