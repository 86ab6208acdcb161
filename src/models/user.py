"""User model - buyers, sellers, agents and admins."""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class UserRole(str, Enum):
    """Participant roles."""
    BUYER = "buyer"
    SELLER = "seller"
    AGENT = "agent"
    ADMIN = "admin"


class VerificationStatus(str, Enum):
    """Identity verification status."""
    PENDING = "pending"
    VERIFIED = "verified"


class User(BaseModel):
    """Platform user. Only role and verification status matter to the workflow."""
    id: str = Field(..., description="User ID (text)")
    role: UserRole = Field(..., description="buyer, seller, agent or admin")
    verification_status: VerificationStatus = Field(
        default=VerificationStatus.PENDING,
        description="Identity verification status"
    )
    is_blocked: bool = Field(default=False, description="Blocked by an admin")
    email: Optional[str] = Field(None, description="Email address")
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    state: Optional[str] = Field(None, description="State used for agent matching")
    city: Optional[str] = None
    expertise: Optional[str] = Field(None, description="Agent expertise, free text")
    license_number: Optional[str] = Field(None, description="Real estate license number")
    verification_session_id: Optional[str] = Field(None, description="Identity verification session")

    @property
    def is_available_agent(self) -> bool:
        """Verified, unblocked agent."""
        return (
            self.role == UserRole.AGENT
            and self.verification_status == VerificationStatus.VERIFIED
            and not self.is_blocked
        )

    @property
    def display_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or self.email or self.id


class Actor(BaseModel):
    """The user performing an action."""
    id: str
    role: UserRole

    @classmethod
    def of(cls, user: User) -> "Actor":
        return cls(id=user.id, role=user.role)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
