"""Property model."""

from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field


class PropertyStatus(str, Enum):
    """Listing status."""
    ACTIVE = "active"
    PENDING = "pending"
    SOLD = "sold"
    WITHDRAWN = "withdrawn"


VIEWABLE_STATUSES = frozenset({PropertyStatus.ACTIVE, PropertyStatus.PENDING})


class Property(BaseModel):
    """Property record a buyer is pursuing."""
    id: str = Field(..., description="Property ID (text)")
    address: str = Field(..., description="Street address")
    city: Optional[str] = None
    state: Optional[str] = Field(None, description="State, matched case-insensitively against agents")
    zip: Optional[str] = None
    status: PropertyStatus = Field(default=PropertyStatus.ACTIVE, description="active, pending, sold, withdrawn")
    created_by: str = Field(..., description="Buyer ID that created the property")
    seller_id: Optional[str] = Field(None, description="Seller user ID")
    agent_id: Optional[str] = Field(None, description="Assigned agent ID")
    price: Optional[int] = None
    property_type: Optional[str] = None
    seller_email: Optional[str] = None
    listing_agent_name: Optional[str] = None
    listing_agent_email: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PropertyDraft(BaseModel):
    """Input for creating a property; also the extraction result shape."""
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    price: Optional[int] = None
    property_type: Optional[str] = None
    seller_id: Optional[str] = None
    seller_email: Optional[str] = None
    listing_agent_name: Optional[str] = None
    listing_agent_email: Optional[str] = None

    def is_empty(self) -> bool:
        """True when nothing was filled in."""
        return not any(value for value in self.model_dump().values())
