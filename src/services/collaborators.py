"""Contracts for the external services the workflow calls."""

from enum import Enum
from typing import Optional, Protocol, Union

from pydantic import BaseModel

from src.models.agreement import AgreementType, SignatureSlot
from src.models.property import Property, PropertyDraft
from src.models.user import User


class VerificationCheck(str, Enum):
    """Decision reported by the identity verification provider."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ERROR = "error"


class VerificationSession(BaseModel):
    """Hosted verification flow handed to the user."""
    url: str
    session_id: str


class ExtractionInput(BaseModel):
    """Raw material for structured extraction. Any subset may be given."""
    address: Optional[str] = None
    url: Optional[str] = None
    images: list[str] = []


class DocumentRenderer(Protocol):
    """Stateless PDF field filling and signature compositing."""

    def fill(self, kind: AgreementType, field_values: dict, prior_bytes: Optional[bytes] = None) -> bytes: ...

    def overlay_signature(self, document: bytes, signature: str, slot: SignatureSlot) -> bytes: ...


class BlobStore(Protocol):
    """Durable byte storage addressed by reference."""

    async def save(self, data: bytes) -> str: ...

    async def load(self, reference: str) -> bytes: ...


class IdentityVerification(Protocol):
    """Third-party identity document verification."""

    async def start_session(self, user: User) -> VerificationSession: ...

    async def check_status(self, session_id: str) -> VerificationCheck: ...


class StructuredExtraction(Protocol):
    """Best-effort property extraction. Returns an empty draft when nothing is found."""

    async def extract(self, source: Union[ExtractionInput, str]) -> PropertyDraft: ...


class AgentRanker(Protocol):
    """Re-orders candidate agents by fit for a property."""

    async def rank(self, prop: Property, agents: list[User]) -> list[User]: ...
