"""AgentLead model - candidate pairing of an agent to a property."""

from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field


class LeadStatus(str, Enum):
    """Claim state of a lead."""
    AVAILABLE = "available"
    CLAIMED = "claimed"


class AgentLead(BaseModel):
    """Lead offered to a candidate agent for a property."""
    id: str = Field(..., description="Lead ID (text)")
    property_id: str = Field(..., description="Property ID (text FK)")
    agent_id: str = Field(..., description="Candidate agent ID (text FK)")
    status: LeadStatus = Field(default=LeadStatus.AVAILABLE, description="available or claimed")
    created_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None
