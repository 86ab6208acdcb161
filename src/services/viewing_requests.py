"""Viewing request lifecycle with independent seller-side and buyer-side agent approval."""

from typing import Optional

from pydantic import BaseModel

from src.models.agreement import AgreementStatus, AgreementType
from src.models.events import EventKind, NotificationEvent
from src.models.property import Property, VIEWABLE_STATUSES
from src.models.user import Actor, UserRole
from src.models.viewing_request import (
    AgentApproval,
    ApprovalSlot,
    ApprovalSource,
    ApprovalStatus,
    TimeWindow,
    ViewingRequest,
    ViewingStatus,
    can_transition,
)
from src.services.activity_ledger import ActivityLedger
from src.services.agreements import current_agreement, has_active_brbc
from src.services.authorization import ownership, require, viewing_ownership
from src.services.outcome import Outcome, outcome
from src.services.storage import Storage
from src.services.viewing_tokens import ViewingTokenService, public_link
from src.utils.config import AppConfig
from src.utils.errors import (
    BrbcRequiredError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from src.utils.ids import generate_id, utcnow
from src.utils.logging import get_structured_logger, get_correlation_id, mask_user_id, sanitize_text

logger = get_structured_logger(__name__)

RESPONSE_DECISIONS = frozenset({ViewingStatus.ACCEPTED, ViewingStatus.REJECTED, ViewingStatus.RESCHEDULED})
SUPERSEDED_NOTE = "[Canceled and replaced with a new request]"
DISCLOSURE_READY = frozenset({AgreementStatus.SIGNED_BY_SELLER, AgreementStatus.COMPLETED})


class ViewingBooking(BaseModel):
    """A new request plus the public link for the listing side."""
    request: ViewingRequest
    public_url: Optional[str] = None
    superseded_ids: list[str] = []


def viewing_parties(request: ViewingRequest, prop: Optional[Property]) -> list[Optional[str]]:
    """Buyer, both side agents, seller and property agent."""
    return [
        request.buyer_id,
        request.buyer_agent_id,
        request.seller_agent_id,
        prop.seller_id if prop else None,
        prop.agent_id if prop else None,
    ]


def _append_note(notes: Optional[str], note: str) -> str:
    return f"{notes}\n{note}" if notes else note


class ViewingRequestMachine:
    """Booking lifecycle for one requested visit to a property."""

    def __init__(
        self,
        storage: Storage,
        ledger: ActivityLedger,
        tokens: Optional[ViewingTokenService] = None,
        completion_requires_disclosure: Optional[bool] = None,
    ):
        self.storage = storage
        self.ledger = ledger
        self.tokens = tokens or ViewingTokenService(storage)
        if completion_requires_disclosure is None:
            completion_requires_disclosure = AppConfig.VIEWING_COMPLETION_REQUIRES_DISCLOSURE
        self.completion_requires_disclosure = completion_requires_disclosure

    @outcome
    async def request_viewing(
        self,
        actor: Actor,
        property_id: str,
        window: TimeWindow,
        notes: Optional[str] = None,
        override: bool = False,
        buyer_id: Optional[str] = None,
    ) -> Outcome:
        """Buyer asks to see a property.

        With an assigned agent the buyer must hold an active BRBC with that
        agent. `override` cancels the buyer's open requests for the property.
        """
        require(actor, "viewing.request")
        buyer_id = actor.id if actor.role == UserRole.BUYER else buyer_id
        if not buyer_id:
            raise ValidationError("buyer_id is required")

        prop = await self._property(property_id)
        if prop.status not in VIEWABLE_STATUSES:
            raise StateConflictError(f"Viewings cannot be requested for a {prop.status.value} property")
        if not prop.seller_id and not prop.agent_id:
            raise ValidationError("Property has no seller or agent to approve a viewing")
        if prop.agent_id and not await has_active_brbc(self.storage, buyer_id, prop.agent_id):
            raise BrbcRequiredError(prop.agent_id)

        superseded: list[str] = []
        events: list[NotificationEvent] = []
        if override:
            for prior in await self.storage.list_viewing_requests(property_id=prop.id, buyer_id=buyer_id):
                if prior.is_terminal:
                    continue
                prior = await self.storage.update_viewing_request(prior.id, {
                    "status": ViewingStatus.CANCELLED,
                    "notes": _append_note(prior.notes, SUPERSEDED_NOTE),
                    "updated_at": utcnow(),
                })
                cancelled = await self._changed(actor.id, prior, prop, "Viewing request canceled and replaced")
                events.extend(cancelled.events)
                superseded.append(prior.id)

        now = utcnow()
        request = await self.storage.insert_viewing_request(ViewingRequest(
            id=generate_id(),
            property_id=prop.id,
            buyer_id=buyer_id,
            buyer_agent_id=prop.agent_id,
            requested=window,
            notes=notes,
            created_at=now,
            updated_at=now,
        ))

        url = None
        try:
            token = await self.tokens.issue(request.id)
            url = public_link(token.token)
        except Exception as e:
            logger.warning(
                "Failed to issue public viewing link",
                correlation_id=get_correlation_id(),
                viewing_request_id=request.id,
                error=str(e),
            )

        await self.ledger.record(
            prop.id,
            actor.id,
            "Viewing requested",
            viewing_request_id=request.id,
            start=window.start.isoformat(),
            end=window.end.isoformat(),
            superseded=superseded,
        )
        logger.info(
            "Viewing requested",
            correlation_id=get_correlation_id(),
            viewing_request_id=request.id,
            property_id=prop.id,
            buyer_id=mask_user_id(buyer_id),
            superseded=len(superseded),
        )

        events.append(NotificationEvent.build(
            viewing_parties(request, prop),
            f"New viewing request for {prop.address}",
            property_id=prop.id,
            viewing_request_id=request.id,
            action="viewing_requested",
        ))
        if prop.agent_id:
            events.append(NotificationEvent.build(
                [prop.agent_id],
                f"Prepare the agency disclosure for {prop.address}",
                kind=EventKind.NOTIFICATION,
                property_id=prop.id,
                viewing_request_id=request.id,
                action="prepare_agency_disclosure",
            ))
        booking = ViewingBooking(request=request, public_url=url, superseded_ids=superseded)
        return Outcome.success(booking, events=events)

    @outcome
    async def respond(
        self,
        actor: Actor,
        request_id: str,
        decision: ViewingStatus,
        confirmed: Optional[TimeWindow] = None,
        message: Optional[str] = None,
    ) -> Outcome:
        """Accept, reject or reschedule a request."""
        require(actor, "viewing.respond")
        decision = self._decision(decision, confirmed)
        request, prop = await self._load(request_id)
        require(actor, "viewing.respond", viewing_ownership(request, prop))
        self._check_transition(request, decision)

        updates = {
            "status": decision,
            "response_message": message,
            "confirmed_by_id": actor.id,
            "updated_at": utcnow(),
        }
        if decision != ViewingStatus.REJECTED:
            updates["confirmed"] = confirmed or request.requested
        request = await self.storage.update_viewing_request(request.id, updates)
        return await self._changed(actor.id, request, prop, f"Viewing {decision.value}")

    @outcome
    async def approve(
        self,
        actor: Actor,
        request_id: str,
        slot: ApprovalSlot,
        decision: ApprovalStatus,
        source: ApprovalSource = ApprovalSource.AGENT_DASHBOARD,
    ) -> Outcome:
        """Record one side's agent approval. Does not change the top-level status."""
        require(actor, "viewing.approve")
        slot = ApprovalSlot(slot)
        decision = ApprovalStatus(decision)
        if decision == ApprovalStatus.PENDING:
            raise ValidationError("Approval decision must be approved or rejected")

        request, prop = await self._load(request_id)
        if slot == ApprovalSlot.SELLER_AGENT:
            owners = ownership(agent=[prop.agent_id, request.seller_agent_id])
        else:
            owners = ownership(agent=request.buyer_agent_id)
        require(actor, "viewing.approve", owners)
        if request.is_terminal:
            raise StateConflictError(f"This viewing request is already {request.status.value}")

        if actor.is_admin:
            source = ApprovalSource.ADMIN_OVERRIDE
        request = await self._record_approval(request, slot, decision, ApprovalSource(source), actor.id)
        return await self._changed(
            actor.id,
            request,
            prop,
            f"{slot.value.replace('_', ' ').capitalize()} {decision.value} viewing",
            approval_source=ApprovalSource(source).value,
        )

    @outcome
    async def cancel(self, actor: Actor, request_id: str, reason: Optional[str] = None) -> Outcome:
        """Buyer withdraws a request. The record is kept."""
        require(actor, "viewing.cancel")
        request, prop = await self._load(request_id)
        require(actor, "viewing.cancel", ownership(buyer=request.buyer_id))
        self._check_transition(request, ViewingStatus.CANCELLED)

        updates = {"status": ViewingStatus.CANCELLED, "updated_at": utcnow()}
        if reason:
            updates["notes"] = _append_note(request.notes, f"[Canceled: {reason}]")
        request = await self.storage.update_viewing_request(request.id, updates)
        return await self._changed(actor.id, request, prop, "Viewing cancelled")

    @outcome
    async def complete(self, actor: Actor, request_id: str) -> Outcome:
        """Mark an accepted or rescheduled viewing as done."""
        require(actor, "viewing.complete")
        request, prop = await self._load(request_id)
        require(actor, "viewing.complete", viewing_ownership(request, prop))
        self._check_transition(request, ViewingStatus.COMPLETED)

        if self.completion_requires_disclosure:
            disclosure = await current_agreement(
                self.storage, prop.id, AgreementType.AGENCY_DISCLOSURE, request.buyer_id
            )
            if disclosure is None or disclosure.status not in DISCLOSURE_READY:
                raise StateConflictError("The agency disclosure must be signed by the seller first")

        request = await self.storage.update_viewing_request(
            request.id, {"status": ViewingStatus.COMPLETED, "updated_at": utcnow()}
        )
        return await self._changed(actor.id, request, prop, "Viewing completed")

    @outcome
    async def view_by_token(self, token: str) -> dict:
        """Public page data for a token link."""
        validated = await self.tokens.validate(token)
        return {"viewing_request": validated.request, "property": validated.property}

    @outcome
    async def respond_via_token(
        self,
        token: str,
        decision: ViewingStatus,
        confirmed: Optional[TimeWindow] = None,
        message: Optional[str] = None,
    ) -> Outcome:
        """Listing agent answers from the public link; records the seller-side approval."""
        decision = self._decision(decision, confirmed)
        validated = await self.tokens.validate(token)
        request, prop = validated.request, validated.property
        if request.status != ViewingStatus.PENDING:
            raise StateConflictError(f"This viewing request has already been {request.status.value}")

        approval = ApprovalStatus.REJECTED if decision == ViewingStatus.REJECTED else ApprovalStatus.APPROVED
        approver = prop.agent_id or prop.seller_id
        updates = {"response_message": message, "updated_at": utcnow()}
        if confirmed is not None:
            updates["confirmed"] = confirmed
        request = await self.storage.update_viewing_request(request.id, updates)
        request = await self._record_approval(
            request, ApprovalSlot.SELLER_AGENT, approval, ApprovalSource.PUBLIC_VIEWING_PAGE, approver
        )

        if decision in (ViewingStatus.ACCEPTED, ViewingStatus.REJECTED):
            await self.tokens.deactivate(validated.token)

        logger.info(
            "Viewing answered via public link",
            correlation_id=get_correlation_id(),
            viewing_request_id=request.id,
            decision=decision.value,
            message_preview=sanitize_text(message, max_length=80),
        )
        return await self._changed(
            approver,
            request,
            prop,
            f"Viewing request {decision.value} by seller's agent via public link",
            approval_source=ApprovalSource.PUBLIC_VIEWING_PAGE.value,
        )

    @outcome
    async def list_for_property(self, actor: Actor, property_id: str) -> list[ViewingRequest]:
        prop = await self._property(property_id)
        requests = await self.storage.list_viewing_requests(property_id=prop.id)
        if actor.is_admin or actor.id in (prop.created_by, prop.seller_id, prop.agent_id):
            return requests
        return [r for r in requests if actor.id in viewing_parties(r, prop)]

    # Internals

    def _decision(self, decision: ViewingStatus, confirmed: Optional[TimeWindow]) -> ViewingStatus:
        try:
            decision = ViewingStatus(decision)
        except ValueError:
            raise ValidationError(f"Unknown decision: {decision}")
        if decision not in RESPONSE_DECISIONS:
            raise ValidationError("Decision must be accepted, rejected or rescheduled")
        if decision == ViewingStatus.RESCHEDULED and confirmed is None:
            raise ValidationError("A confirmed window is required to reschedule")
        return decision

    def _check_transition(self, request: ViewingRequest, target: ViewingStatus) -> None:
        if not can_transition(request.status, target):
            raise StateConflictError(
                f"Cannot move a viewing request from {request.status.value} to {target.value}"
            )

    async def _record_approval(
        self,
        request: ViewingRequest,
        slot: ApprovalSlot,
        decision: ApprovalStatus,
        source: ApprovalSource,
        approver_id: Optional[str],
    ) -> ViewingRequest:
        approval = AgentApproval(status=decision, source=source, approved_by_id=approver_id, decided_at=utcnow())
        return await self.storage.update_viewing_request(
            request.id, {f"{slot.value}_approval": approval, "updated_at": utcnow()}
        )

    async def _changed(
        self,
        actor_id: Optional[str],
        request: ViewingRequest,
        prop: Property,
        activity: str,
        **details,
    ) -> Outcome:
        await self.ledger.record(
            prop.id,
            actor_id,
            activity,
            viewing_request_id=request.id,
            status=request.status.value,
            **details,
        )
        logger.info(
            activity,
            correlation_id=get_correlation_id(),
            viewing_request_id=request.id,
            status=request.status.value,
        )
        event = NotificationEvent.build(
            viewing_parties(request, prop),
            f"{activity}: {prop.address}",
            property_id=prop.id,
            viewing_request_id=request.id,
            action=f"viewing_{request.status.value}",
        )
        return Outcome.success(request, events=[event])

    async def _load(self, request_id: str) -> tuple[ViewingRequest, Property]:
        request = await self.storage.get_viewing_request(request_id)
        if request is None:
            raise NotFoundError(f"Viewing request not found: {request_id}")
        return request, await self._property(request.property_id)

    async def _property(self, property_id: str) -> Property:
        prop = await self.storage.get_property(property_id)
        if prop is None:
            raise NotFoundError(f"Property not found: {property_id}")
        return prop
