"""Property chat between its parties, and the support chat answered by admins."""

from typing import Optional

from src.models.events import EventKind, NotificationEvent
from src.models.message import MAX_MESSAGE_LENGTH, Message, SupportMessage
from src.models.property import Property
from src.models.user import Actor
from src.services.authorization import can_access, participant_ownership, property_ownership, require
from src.services.outcome import Outcome, outcome
from src.services.storage import Storage
from src.utils.errors import ForbiddenError, NotFoundError, ValidationError
from src.utils.ids import generate_id, utcnow
from src.utils.logging import get_structured_logger, get_correlation_id, mask_user_id, sanitize_text

logger = get_structured_logger(__name__)


def _content(text: Optional[str]) -> str:
    content = (text or "").strip()
    if not content:
        raise ValidationError("Message content is required")
    if len(content) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Message is longer than {MAX_MESSAGE_LENGTH} characters")
    return content


class MessageService:
    """Stores chat messages and returns the events that push them to recipients."""

    def __init__(self, storage: Storage):
        self.storage = storage

    async def _property(self, property_id: str) -> Property:
        prop = await self.storage.get_property(property_id)
        if prop is None:
            raise NotFoundError(f"Property not found: {property_id}")
        return prop

    async def _require_party(self, prop: Property, user_id: str) -> None:
        """The user must hold the property through their own role."""
        user = await self.storage.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User not found: {user_id}")
        if not can_access(user.role, user.id, property_ownership(prop)):
            raise ForbiddenError("Receiver is not a party to this property")

    @outcome
    async def send(self, actor: Actor, property_id: str, receiver_id: str, content: str) -> Outcome:
        """Send a direct message to another party of the property."""
        require(actor, "message.send")
        prop = await self._property(property_id)
        require(actor, "message.send", property_ownership(prop))
        if not receiver_id:
            raise ValidationError("receiver_id is required")
        if receiver_id == actor.id:
            raise ValidationError("Cannot message yourself")
        text = _content(content)
        await self._require_party(prop, receiver_id)

        message = await self.storage.insert_message(Message(
            id=generate_id(),
            property_id=prop.id,
            sender_id=actor.id,
            receiver_id=receiver_id,
            content=text,
            timestamp=utcnow(),
        ))
        logger.info(
            "Message sent",
            correlation_id=get_correlation_id(),
            property_id=prop.id,
            sender_id=mask_user_id(actor.id),
            receiver_id=mask_user_id(receiver_id),
        )
        event = NotificationEvent.build(
            [actor.id, receiver_id],
            text,
            kind=EventKind.MESSAGE,
            property_id=prop.id,
            message_id=message.id,
            action="message_sent",
        )
        return Outcome.success(message, events=[event])

    @outcome
    async def list_for_property(
        self,
        actor: Actor,
        property_id: str,
        with_user_id: Optional[str] = None,
    ) -> list[Message]:
        """Messages on a property, oldest first.

        Parties see only conversations they take part in; admins see all.
        `with_user_id` narrows to one conversation.
        """
        require(actor, "message.list")
        prop = await self._property(property_id)
        require(actor, "message.list", property_ownership(prop))
        messages = await self.storage.list_messages(prop.id)
        if not actor.is_admin:
            messages = [m for m in messages if m.involves(actor.id)]
        if with_user_id:
            messages = [m for m in messages if m.involves(with_user_id)]
        return messages

    @outcome
    async def mark_read(self, actor: Actor, message_id: str) -> Message:
        """Only the receiver (or an admin) marks a message read."""
        require(actor, "message.read")
        message = await self.storage.get_message(message_id)
        if message is None:
            raise NotFoundError(f"Message not found: {message_id}")
        require(actor, "message.read", participant_ownership(message.receiver_id))
        if message.is_read:
            return message
        return await self.storage.mark_message_read(message.id)

    @outcome
    async def send_support(
        self,
        session_id: str,
        sender_name: str,
        content: str,
        actor: Optional[Actor] = None,
        sender_email: Optional[str] = None,
    ) -> Outcome:
        """Post to a support conversation.

        Visitors may be anonymous. Every connected admin receives each line;
        admin replies also reach the signed-in customers of the session.
        """
        if not session_id or not session_id.strip():
            raise ValidationError("session_id is required")
        if not sender_name or not sender_name.strip():
            raise ValidationError("sender_name is required")
        text = _content(content)
        is_admin = bool(actor and actor.is_admin)

        message = await self.storage.insert_support_message(SupportMessage(
            id=generate_id(),
            session_id=session_id,
            sender_id=actor.id if actor else None,
            sender_name=sender_name.strip(),
            sender_email=sender_email,
            content=text,
            is_admin=is_admin,
            timestamp=utcnow(),
        ))

        if is_admin:
            history = await self.storage.list_support_messages(session_id)
            recipients = [m.sender_id for m in history if not m.is_admin]
        else:
            recipients = [message.sender_id]
        logger.info(
            "Support message posted",
            correlation_id=get_correlation_id(),
            session_id=sanitize_text(session_id, max_length=40),
            is_admin=is_admin,
            anonymous=actor is None,
        )
        event = NotificationEvent.build(
            recipients,
            text,
            kind=EventKind.SUPPORT,
            to_admins=True,
            session_id=session_id,
            message_id=message.id,
            action="support_message",
        )
        return Outcome.success(message, events=[event])

    @outcome
    async def support_session(self, actor: Actor, session_id: str) -> list[SupportMessage]:
        """Full support conversation, oldest first. Admins only."""
        require(actor, "support.view")
        return await self.storage.list_support_messages(session_id)
