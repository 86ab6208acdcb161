"""Authorization gate: who may act on which record."""

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, Union

from src.models.agreement import Agreement
from src.models.property import Property
from src.models.user import Actor, UserRole
from src.models.viewing_request import ViewingRequest
from src.utils.errors import ForbiddenError
from src.utils.logging import get_structured_logger, mask_user_id

logger = get_structured_logger(__name__)

ALL_ROLES = frozenset(UserRole)


@dataclass(frozen=True)
class Ownership:
    """Ids that own a resource, keyed by the role they own it through."""
    ids: Mapping[UserRole, frozenset[str]] = field(default_factory=dict)

    def for_role(self, role: UserRole) -> frozenset[str]:
        return self.ids.get(role, frozenset())

    def only(self, role: UserRole) -> "Ownership":
        """Restrict to a single role (one signature slot, one approval slot)."""
        return Ownership({role: self.for_role(role)})


def ownership(**by_role: Union[str, Iterable[Optional[str]], None]) -> Ownership:
    """Build Ownership from role names. Values may be an id, None, or several ids."""
    ids: dict[UserRole, frozenset[str]] = {}
    for role_name, value in by_role.items():
        values = [value] if value is None or isinstance(value, str) else list(value)
        ids[UserRole(role_name)] = frozenset(v for v in values if v)
    return Ownership(ids)


def can_access(actor_role: UserRole, actor_id: str, resource: Ownership) -> bool:
    """Admin always; otherwise the actor id must hold the resource through the actor's role."""
    if actor_role == UserRole.ADMIN:
        return True
    return bool(actor_id) and actor_id in resource.for_role(actor_role)


# Roles that may attempt each action at all
ACTION_ROLES: dict[str, frozenset[UserRole]] = {
    "property.create": frozenset({UserRole.BUYER, UserRole.ADMIN}),
    "property.delete": frozenset({UserRole.BUYER, UserRole.ADMIN}),
    "property.update_status": frozenset({UserRole.BUYER, UserRole.SELLER, UserRole.AGENT, UserRole.ADMIN}),
    "property.set_seller": frozenset({UserRole.BUYER, UserRole.AGENT, UserRole.ADMIN}),
    "property.view_activity": ALL_ROLES,
    "lead.claim": frozenset({UserRole.AGENT}),
    "lead.list": frozenset({UserRole.AGENT, UserRole.ADMIN}),
    "agent.choose": frozenset({UserRole.BUYER}),
    "agent.reassign": frozenset({UserRole.ADMIN}),
    "viewing.request": frozenset({UserRole.BUYER, UserRole.ADMIN}),
    "viewing.respond": frozenset({UserRole.AGENT, UserRole.SELLER, UserRole.ADMIN}),
    "viewing.approve": frozenset({UserRole.AGENT, UserRole.ADMIN}),
    "viewing.complete": frozenset({UserRole.AGENT, UserRole.SELLER, UserRole.ADMIN}),
    "viewing.cancel": frozenset({UserRole.BUYER, UserRole.ADMIN}),
    "agreement.create_disclosure": frozenset({UserRole.BUYER, UserRole.AGENT, UserRole.ADMIN}),
    "agreement.create_standard": frozenset({UserRole.AGENT, UserRole.ADMIN}),
    "agreement.create_brbc": frozenset({UserRole.BUYER}),
    "agreement.create_referral": frozenset({UserRole.AGENT}),
    "agreement.sign": ALL_ROLES,
    "agreement.edit": frozenset({UserRole.BUYER, UserRole.AGENT, UserRole.ADMIN}),
    "agreement.render": ALL_ROLES,
    "agreement.override": frozenset({UserRole.ADMIN}),
    "verification.start": frozenset({UserRole.BUYER, UserRole.SELLER, UserRole.AGENT}),
    "message.send": ALL_ROLES,
    "message.list": ALL_ROLES,
    "message.read": ALL_ROLES,
    "support.view": frozenset({UserRole.ADMIN}),
}


def is_permitted(action: str, role: UserRole) -> bool:
    """Whether a role may attempt an action. Unknown actions are denied."""
    return role in ACTION_ROLES.get(action, frozenset())


def require(actor: Actor, action: str, resource: Optional[Ownership] = None) -> None:
    """Raise ForbiddenError unless the actor's role may act and, if given, the actor owns the resource."""
    if not is_permitted(action, actor.role):
        logger.info("Action denied for role", action=action, role=actor.role.value)
        raise ForbiddenError(f"{actor.role.value} may not perform {action}")
    if resource is not None and not can_access(actor.role, actor.id, resource):
        logger.info(
            "Action denied for resource",
            action=action,
            role=actor.role.value,
            actor_id=mask_user_id(actor.id),
        )
        raise ForbiddenError(f"Not authorized to perform {action} on this record")


def property_ownership(prop: Property) -> Ownership:
    return ownership(buyer=prop.created_by, seller=prop.seller_id, agent=prop.agent_id)


def participant_ownership(*user_ids: Optional[str]) -> Ownership:
    """Role-independent ownership: the listed users, whatever role they act in."""
    ids = frozenset(u for u in user_ids if u)
    return Ownership({role: ids for role in UserRole})


def viewing_ownership(request: ViewingRequest, prop: Optional[Property]) -> Ownership:
    """Buyer, both side agents plus the property's agent, and the seller."""
    return ownership(
        buyer=request.buyer_id,
        agent=[request.buyer_agent_id, request.seller_agent_id, prop.agent_id if prop else None],
        seller=prop.seller_id if prop else None,
    )


def agreement_ownership(agreement: Agreement, prop: Optional[Property]) -> Ownership:
    """Signature slot owners: the property's agent when there is a property, otherwise the agreement's."""
    return ownership(
        buyer=agreement.buyer_id,
        agent=prop.agent_id if prop else agreement.agent_id,
        seller=prop.seller_id if prop else None,
    )
