"""Lead allocation: matching agents to properties and resolving lead claims."""

from dataclasses import dataclass, field
from typing import Optional

from src.models.agent_lead import AgentLead, LeadStatus
from src.models.events import EventKind, NotificationEvent
from src.models.property import Property, PropertyStatus
from src.models.user import Actor, User, UserRole
from src.services.activity_ledger import ActivityLedger
from src.services.authorization import property_ownership, require
from src.services.collaborators import AgentRanker
from src.services.outcome import Outcome, outcome
from src.services.storage import Storage
from src.utils.config import AppConfig
from src.utils.errors import NotFoundError, StateConflictError, ValidationError
from src.utils.ids import generate_id, utcnow
from src.utils.logging import get_structured_logger, get_correlation_id, mask_user_id

logger = get_structured_logger(__name__)

CLOSED_PROPERTY_STATUSES = frozenset({PropertyStatus.SOLD, PropertyStatus.WITHDRAWN})


def _same_state(agent: User, state: str) -> bool:
    return bool(state) and (agent.state or "").strip().lower() == state


@dataclass
class SeedResult:
    """Property after seeding, the leads created, and who to tell."""
    property: Property
    leads: list[AgentLead] = field(default_factory=list)
    events: list[NotificationEvent] = field(default_factory=list)


class LeadAllocator:
    """Matches properties to verified agents and arbitrates lead claims."""

    def __init__(
        self,
        storage: Storage,
        ledger: ActivityLedger,
        ranker: Optional[AgentRanker] = None,
        candidate_limit: Optional[int] = None,
    ):
        self.storage = storage
        self.ledger = ledger
        self.ranker = ranker
        self.candidate_limit = candidate_limit or AppConfig.LEAD_CANDIDATE_LIMIT

    async def match_agents(self, prop: Property) -> list[User]:
        """Up to `candidate_limit` verified, unblocked agents, same-state first."""
        agents = [a for a in await self.storage.list_users(UserRole.AGENT) if a.is_available_agent]
        if not agents:
            logger.info("No verified agents available", property_id=prop.id)
            return []

        state = (prop.state or "").strip().lower()
        same_state = [a for a in agents if _same_state(a, state)]

        if len(same_state) >= self.candidate_limit:
            if self.ranker is not None:
                try:
                    same_state = await self.ranker.rank(prop, same_state)
                except Exception as e:
                    logger.warning(
                        "Agent re-ranking failed, using unranked order",
                        correlation_id=get_correlation_id(),
                        property_id=prop.id,
                        error=str(e),
                    )
            return same_state[:self.candidate_limit]

        others = [a for a in agents if not _same_state(a, state)]
        return (same_state + others)[:self.candidate_limit]

    async def assign_and_seed_leads(self, prop: Property, candidates: list[User]) -> SeedResult:
        """First candidate becomes the assigned agent unless one is already set; the rest get available leads."""
        if not candidates:
            return SeedResult(property=prop)

        if prop.agent_id is None:
            assigned = await self.storage.assign_property_agent_if_vacant(prop.id, candidates[0].id)
            prop = assigned or await self.storage.get_property(prop.id) or prop

        existing = {lead.agent_id for lead in await self.storage.list_leads(property_id=prop.id)}
        now = utcnow()
        leads = [
            AgentLead(
                id=generate_id(),
                property_id=prop.id,
                agent_id=agent.id,
                status=LeadStatus.CLAIMED if agent.id == prop.agent_id else LeadStatus.AVAILABLE,
                created_at=now,
                claimed_at=now if agent.id == prop.agent_id else None,
            )
            for agent in candidates
            if agent.id not in existing
        ]
        leads = await self.storage.insert_leads(leads)

        events: list[NotificationEvent] = []
        for lead in leads:
            if lead.status == LeadStatus.CLAIMED:
                message = f"You have been assigned to {prop.address}"
                action = "agent_assigned"
            else:
                message = f"New lead available: {prop.address}"
                action = "lead_available"
            events.append(NotificationEvent.build(
                [lead.agent_id], message, kind=EventKind.NOTIFICATION, property_id=prop.id, action=action,
            ))

        await self.ledger.record(
            prop.id,
            None,
            "Agent leads created",
            agent_id=prop.agent_id,
            lead_agent_ids=[lead.agent_id for lead in leads],
        )
        logger.info(
            "Seeded agent leads",
            correlation_id=get_correlation_id(),
            property_id=prop.id,
            agent_id=mask_user_id(prop.agent_id),
            leads_created=len(leads),
        )
        return SeedResult(property=prop, leads=leads, events=events)

    @outcome
    async def claim_lead(self, actor: Actor, lead_id: str) -> Outcome:
        """Atomically claim an available lead and take the property if it is vacant."""
        require(actor, "lead.claim")

        lead = await self.storage.get_lead(lead_id)
        if lead is None:
            raise NotFoundError(f"Lead not found: {lead_id}")

        claimed = await self.storage.claim_lead_if_available(lead_id, actor.id)
        if claimed is None:
            raise StateConflictError("This lead is no longer available")

        prop = await self.storage.assign_property_agent_if_vacant(lead.property_id, actor.id)
        if prop is None:
            await self.storage.release_lead(lead_id)
            raise StateConflictError("Another agent already represents this property")

        await self.ledger.record(prop.id, actor.id, "Agent claimed lead", lead_id=lead_id, agent_id=actor.id)
        logger.info(
            "Lead claimed",
            correlation_id=get_correlation_id(),
            lead_id=lead_id,
            property_id=prop.id,
            agent_id=mask_user_id(actor.id),
        )
        event = NotificationEvent.build(
            [prop.created_by, prop.seller_id, actor.id],
            f"An agent is now representing {prop.address}",
            property_id=prop.id,
            action="lead_claimed",
        )
        return Outcome.success(claimed, events=[event])

    @outcome
    async def choose_agent(self, actor: Actor, property_id: str, agent_id: str) -> Outcome:
        """Buyer picks a different agent for their property."""
        prop = await self._property(property_id)
        require(actor, "agent.choose", property_ownership(prop).only(UserRole.BUYER))
        return await self._reassign(actor, prop, agent_id, "Buyer chose agent")

    @outcome
    async def reassign_agent(self, actor: Actor, property_id: str, agent_id: str) -> Outcome:
        """Admin override of the assigned agent."""
        require(actor, "agent.reassign")
        prop = await self._property(property_id)
        return await self._reassign(actor, prop, agent_id, "Admin reassigned agent")

    @outcome
    async def seed_leads_for_agent(self, agent: User) -> Outcome:
        """Offer a newly verified agent leads on properties in their state."""
        if not agent.is_available_agent:
            raise ValidationError("Only verified, unblocked agents receive leads")

        properties: list[Property] = []
        if agent.state:
            properties = await self.storage.list_properties(state=agent.state)
        if not properties:
            properties = await self.storage.list_properties()

        held = {lead.property_id for lead in await self.storage.list_leads(agent_id=agent.id)}
        targets = [
            p for p in properties
            if p.id not in held and p.status not in CLOSED_PROPERTY_STATUSES
        ][:self.candidate_limit]

        now = utcnow()
        leads = await self.storage.insert_leads([
            AgentLead(id=generate_id(), property_id=p.id, agent_id=agent.id, created_at=now)
            for p in targets
        ])
        for p in targets:
            await self.ledger.record(p.id, None, "Lead offered to newly verified agent", agent_id=agent.id)

        events = []
        if leads:
            events.append(NotificationEvent.build(
                [agent.id],
                f"{len(leads)} new lead(s) are available",
                kind=EventKind.NOTIFICATION,
                action="leads_available",
            ))
        logger.info("Seeded leads for agent", agent_id=mask_user_id(agent.id), leads_created=len(leads))
        return Outcome.success(leads, events=events)

    @outcome
    async def available_leads(self, actor: Actor, agent_id: Optional[str] = None) -> list[AgentLead]:
        """Available leads for the acting agent (admins may name one)."""
        require(actor, "lead.list")
        target = agent_id if actor.is_admin and agent_id else actor.id
        return await self.storage.list_leads(agent_id=target, status=LeadStatus.AVAILABLE)

    async def _property(self, property_id: str) -> Property:
        prop = await self.storage.get_property(property_id)
        if prop is None:
            raise NotFoundError(f"Property not found: {property_id}")
        return prop

    async def _reassign(self, actor: Actor, prop: Property, agent_id: str, activity: str) -> Outcome:
        agent = await self.storage.get_user(agent_id)
        if agent is None or not agent.is_available_agent:
            raise ValidationError("Agent must be a verified, unblocked agent")

        previous = prop.agent_id
        if previous == agent_id:
            return Outcome.success(prop)

        prop = await self.storage.update_property(prop.id, {"agent_id": agent_id, "updated_at": utcnow()})

        for lead in await self.storage.list_leads(property_id=prop.id, status=LeadStatus.CLAIMED):
            await self.storage.release_lead(lead.id)

        lead = next(iter(await self.storage.list_leads(property_id=prop.id, agent_id=agent_id)), None)
        if lead is None:
            now = utcnow()
            await self.storage.insert_leads([AgentLead(
                id=generate_id(),
                property_id=prop.id,
                agent_id=agent_id,
                status=LeadStatus.CLAIMED,
                created_at=now,
                claimed_at=now,
            )])
        else:
            await self.storage.claim_lead_if_available(lead.id, agent_id)

        await self.ledger.record(prop.id, actor.id, activity, previous_agent_id=previous, agent_id=agent_id)
        logger.info(
            "Agent reassigned",
            correlation_id=get_correlation_id(),
            property_id=prop.id,
            previous_agent_id=mask_user_id(previous),
            agent_id=mask_user_id(agent_id),
        )
        event = NotificationEvent.build(
            [prop.created_by, prop.seller_id, previous, agent_id],
            f"Agent for {prop.address} changed",
            property_id=prop.id,
            action="agent_reassigned",
        )
        return Outcome.success(prop, events=[event])
