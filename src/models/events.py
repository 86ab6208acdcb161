"""Outbound notification events."""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class EventKind(str, Enum):
    """Client handling hint."""
    PROPERTY_UPDATE = "property_update"
    NOTIFICATION = "notification"
    MESSAGE = "message"
    SUPPORT = "support"


class EventPayload(BaseModel):
    """What changed."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    property_id: Optional[str] = None
    viewing_request_id: Optional[str] = None
    agreement_id: Optional[str] = None
    message_id: Optional[str] = None
    session_id: Optional[str] = None
    action: Optional[str] = None
    message: str = ""


class NotificationEvent(BaseModel):
    """Event pushed to connected recipients."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    recipient_user_ids: list[str] = Field(default_factory=list)
    kind: EventKind = EventKind.PROPERTY_UPDATE
    payload: EventPayload = Field(default_factory=EventPayload)
    # Also fan out to every connected admin; never sent on the wire
    to_admins: bool = Field(False, exclude=True)

    @classmethod
    def build(
        cls,
        recipients,
        message: str,
        kind: EventKind = EventKind.PROPERTY_UPDATE,
        to_admins: bool = False,
        **payload,
    ) -> "NotificationEvent":
        """Event with deduplicated, non-empty recipients in first-seen order."""
        seen: list[str] = []
        for user_id in recipients:
            if user_id and user_id not in seen:
                seen.append(user_id)
        return cls(
            recipient_user_ids=seen,
            kind=kind,
            to_admins=to_admins,
            payload=EventPayload(message=message, **payload),
        )

    def to_wire(self) -> str:
        """camelCase JSON as sent over the socket."""
        return self.model_dump_json(by_alias=True, exclude_none=True)
