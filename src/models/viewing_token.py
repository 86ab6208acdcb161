"""ViewingToken model - public response link for a viewing request."""

from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field


class ViewingToken(BaseModel):
    """Single-use link that lets a listing agent answer without an account."""
    id: str = Field(..., description="Token record ID (text)")
    token: str = Field(..., description="Random hex token")
    viewing_request_id: str = Field(..., description="Viewing request ID (text FK)")
    expires_at: datetime
    is_active: bool = True
    last_accessed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at
