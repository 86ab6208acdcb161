"""ViewingRequest model - one requested visit to a property."""

from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field, model_validator


class ViewingStatus(str, Enum):
    """Top-level booking status."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    RESCHEDULED = "rescheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ApprovalStatus(str, Enum):
    """Agent sign-off on a viewing request."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ApprovalSource(str, Enum):
    """Surface an approval came from."""
    AGENT_DASHBOARD = "agent_dashboard"
    PUBLIC_VIEWING_PAGE = "public_viewing_page"
    ADMIN_OVERRIDE = "admin_override"


TERMINAL_STATUSES = frozenset({ViewingStatus.COMPLETED, ViewingStatus.CANCELLED})

ALLOWED_TRANSITIONS: dict[ViewingStatus, frozenset[ViewingStatus]] = {
    ViewingStatus.PENDING: frozenset({
        ViewingStatus.ACCEPTED,
        ViewingStatus.REJECTED,
        ViewingStatus.RESCHEDULED,
        ViewingStatus.CANCELLED,
    }),
    ViewingStatus.ACCEPTED: frozenset({ViewingStatus.COMPLETED, ViewingStatus.CANCELLED}),
    ViewingStatus.RESCHEDULED: frozenset({
        ViewingStatus.ACCEPTED,
        ViewingStatus.COMPLETED,
        ViewingStatus.CANCELLED,
    }),
    ViewingStatus.REJECTED: frozenset({ViewingStatus.CANCELLED}),
    ViewingStatus.COMPLETED: frozenset(),
    ViewingStatus.CANCELLED: frozenset(),
}


def can_transition(current: ViewingStatus, target: ViewingStatus) -> bool:
    """Whether the booking graph allows current -> target."""
    return target in ALLOWED_TRANSITIONS[current]


class TimeWindow(BaseModel):
    """Start/end of a visit."""
    start: datetime
    end: datetime

    @model_validator(mode="after")
    def _check_order(self) -> "TimeWindow":
        if self.end <= self.start:
            raise ValueError("Viewing window must end after it starts")
        return self


class AgentApproval(BaseModel):
    """One independent approval slot."""
    status: ApprovalStatus = ApprovalStatus.PENDING
    source: Optional[ApprovalSource] = Field(None, description="Surface the decision came from")
    approved_by_id: Optional[str] = None
    decided_at: Optional[datetime] = None


class ViewingRequest(BaseModel):
    """Viewing request lifecycle record. Never hard-deleted."""
    id: str = Field(..., description="Viewing request ID (text)")
    property_id: str = Field(..., description="Property ID (text FK)")
    buyer_id: str = Field(..., description="Requesting buyer ID")
    buyer_agent_id: Optional[str] = Field(None, description="Buyer-side agent ID")
    seller_agent_id: Optional[str] = Field(None, description="Seller-side agent ID")
    requested: TimeWindow = Field(..., description="Requested window")
    confirmed: Optional[TimeWindow] = Field(None, description="Confirmed window")
    status: ViewingStatus = Field(default=ViewingStatus.PENDING)
    seller_agent_approval: AgentApproval = Field(default_factory=AgentApproval)
    buyer_agent_approval: AgentApproval = Field(default_factory=AgentApproval)
    notes: Optional[str] = None
    response_message: Optional[str] = None
    confirmed_by_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def seller_agent_approval_status(self) -> ApprovalStatus:
        return self.seller_agent_approval.status

    @property
    def buyer_agent_approval_status(self) -> ApprovalStatus:
        return self.buyer_agent_approval.status


class ApprovalSlot(str, Enum):
    """Which agent approval a decision writes."""
    SELLER_AGENT = "seller_agent"
    BUYER_AGENT = "buyer_agent"
