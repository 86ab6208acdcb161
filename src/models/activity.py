"""Activity log model - who touched a property and what happened."""

from typing import Optional, Any
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field


class ActivityLogEntry(BaseModel):
    """Append-only activity record. Immutable once written."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Entry ID (text)")
    property_id: str = Field(..., description="Property ID (text FK)")
    actor_id: Optional[str] = Field(None, description="Acting user ID, None for system events")
    activity: str = Field(..., description="Free-text activity label")
    details: dict[str, Any] = Field(default_factory=dict, description="Structured detail blob")
    timestamp: datetime
