"""Chat models - property-scoped messages between parties, and support chat."""

from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field

MAX_MESSAGE_LENGTH = 5000


class Message(BaseModel):
    """Direct message between two parties of one property."""
    id: str = Field(..., description="Message ID (text)")
    property_id: str = Field(..., description="Property ID (text FK)")
    sender_id: str
    receiver_id: str
    content: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)
    timestamp: datetime
    is_read: bool = False

    def involves(self, user_id: str) -> bool:
        return user_id in (self.sender_id, self.receiver_id)


class SupportMessage(BaseModel):
    """One line of a support conversation; visitors may be anonymous."""
    id: str = Field(..., description="Support message ID (text)")
    session_id: str = Field(..., description="Client-chosen conversation key")
    sender_id: Optional[str] = Field(None, description="User ID when signed in")
    sender_name: str
    sender_email: Optional[str] = None
    content: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)
    is_admin: bool = False
    is_read: bool = False
    timestamp: datetime
