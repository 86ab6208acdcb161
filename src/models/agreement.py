"""Agreement models - signed legal documents, one variant per agreement type."""

from enum import Enum
from typing import Annotated, ClassVar, Literal, Optional, Union
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class AgreementType(str, Enum):
    """Document kinds."""
    AGENCY_DISCLOSURE = "agency_disclosure"
    STANDARD = "standard"
    GLOBAL_BRBC = "global_brbc"
    AGENT_REFERRAL = "agent_referral"


class AgreementStatus(str, Enum):
    """Shared status vocabulary across agreement types."""
    DRAFT = "draft"
    PENDING_BUYER = "pending_buyer"
    SIGNED_BY_BUYER = "signed_by_buyer"
    SIGNED_BUYER = "signed_buyer"
    PENDING = "pending"
    SIGNED_BY_SELLER = "signed_by_seller"
    COMPLETED = "completed"
    REJECTED = "rejected"


class SignatureSlot(str, Enum):
    """Signature fields on an agreement."""
    BUYER = "buyer"
    AGENT = "agent"
    SELLER = "seller"


class AgreementBase(BaseModel):
    """Fields and signature-capture helpers shared by every agreement type."""
    model_config = ConfigDict(ser_json_bytes="base64", val_json_bytes="base64")

    slots: ClassVar[tuple[SignatureSlot, ...]] = ()
    statuses: ClassVar[frozenset[AgreementStatus]] = frozenset()

    id: str = Field(..., description="Agreement ID (text)")
    agent_id: str = Field(..., description="Agent party")
    status: AgreementStatus = Field(default=AgreementStatus.DRAFT)
    buyer_signature: Optional[str] = Field(None, description="Signature image (data URL)")
    agent_signature: Optional[str] = Field(None, description="Signature image (data URL)")
    document_ref: Optional[str] = Field(None, description="Blob reference of the rendered document")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.status == AgreementStatus.COMPLETED

    def signature(self, slot: SignatureSlot) -> Optional[str]:
        return getattr(self, f"{slot.value}_signature", None)

    def has_signature(self, slot: SignatureSlot) -> bool:
        return bool(self.signature(slot))

    def with_signature(self, slot: SignatureSlot, signature: str) -> "AgreementBase":
        """Copy with one signature slot written."""
        if slot not in self.slots:
            raise ValueError(f"{self.type.value} has no {slot.value} signature")
        return self.model_copy(update={f"{slot.value}_signature": signature})

    def field_values(self) -> dict:
        """Values handed to the document renderer."""
        return self.model_dump(
            mode="json",
            exclude={"buyer_signature", "agent_signature", "seller_signature", "edited_document"},
        )


class AgencyDisclosureAgreement(AgreementBase):
    """Per-property disclosure needing buyer, agent and seller signatures in turn."""
    slots: ClassVar[tuple[SignatureSlot, ...]] = (
        SignatureSlot.BUYER, SignatureSlot.AGENT, SignatureSlot.SELLER
    )
    statuses: ClassVar[frozenset[AgreementStatus]] = frozenset({
        AgreementStatus.DRAFT,
        AgreementStatus.PENDING_BUYER,
        AgreementStatus.SIGNED_BY_BUYER,
        AgreementStatus.PENDING,
        AgreementStatus.SIGNED_BY_SELLER,
        AgreementStatus.COMPLETED,
        AgreementStatus.REJECTED,
    })

    type: Literal[AgreementType.AGENCY_DISCLOSURE] = AgreementType.AGENCY_DISCLOSURE
    property_id: str = Field(..., description="Property ID (text FK)")
    buyer_id: str
    seller_signature: Optional[str] = None
    edited_document: Optional[bytes] = Field(None, description="Raw edited PDF bytes")


class StandardAgreement(AgreementBase):
    """Per-property buyer representation agreement."""
    slots: ClassVar[tuple[SignatureSlot, ...]] = (
        SignatureSlot.BUYER, SignatureSlot.AGENT, SignatureSlot.SELLER
    )
    statuses: ClassVar[frozenset[AgreementStatus]] = frozenset({
        AgreementStatus.DRAFT,
        AgreementStatus.PENDING_BUYER,
        AgreementStatus.SIGNED_BUYER,
        AgreementStatus.COMPLETED,
        AgreementStatus.REJECTED,
    })

    type: Literal[AgreementType.STANDARD] = AgreementType.STANDARD
    property_id: str
    buyer_id: str
    seller_signature: Optional[str] = None


class GlobalBrbcAgreement(AgreementBase):
    """Buyer-to-agent representation confirmation, not tied to a property."""
    slots: ClassVar[tuple[SignatureSlot, ...]] = (SignatureSlot.BUYER, SignatureSlot.AGENT)
    statuses: ClassVar[frozenset[AgreementStatus]] = frozenset({
        AgreementStatus.SIGNED_BY_BUYER,
        AgreementStatus.COMPLETED,
        AgreementStatus.REJECTED,
    })

    type: Literal[AgreementType.GLOBAL_BRBC] = AgreementType.GLOBAL_BRBC
    buyer_id: str

    @property
    def property_id(self) -> None:
        return None


class AgentReferralAgreement(AgreementBase):
    """Agent-only referral agreement."""
    slots: ClassVar[tuple[SignatureSlot, ...]] = (SignatureSlot.AGENT,)
    statuses: ClassVar[frozenset[AgreementStatus]] = frozenset({AgreementStatus.COMPLETED})

    type: Literal[AgreementType.AGENT_REFERRAL] = AgreementType.AGENT_REFERRAL
    status: AgreementStatus = AgreementStatus.COMPLETED

    @property
    def property_id(self) -> None:
        return None

    @property
    def buyer_id(self) -> None:
        return None


Agreement = Annotated[
    Union[AgencyDisclosureAgreement, StandardAgreement, GlobalBrbcAgreement, AgentReferralAgreement],
    Field(discriminator="type"),
]

AgreementAdapter: TypeAdapter[Agreement] = TypeAdapter(Agreement)

# Active BRBC statuses that unlock viewing requests
ACTIVE_BRBC_STATUSES = frozenset({AgreementStatus.COMPLETED, AgreementStatus.SIGNED_BY_BUYER})


def parse_agreement(data: dict) -> Agreement:
    """Build the right variant from a dict carrying `type`."""
    return AgreementAdapter.validate_python(data)
