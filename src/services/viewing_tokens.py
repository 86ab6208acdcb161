"""Public viewing links: tokens that let a listing agent respond without an account."""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from src.models.property import Property
from src.models.viewing_request import ViewingRequest
from src.models.viewing_token import ViewingToken
from src.services.storage import Storage
from src.utils.config import AppConfig
from src.utils.errors import ForbiddenError, NotFoundError
from src.utils.ids import generate_id, generate_token, utcnow
from src.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)


@dataclass
class ValidatedToken:
    """A usable token with the records it unlocks."""
    token: ViewingToken
    request: ViewingRequest
    property: Property


def public_link(token: str) -> str:
    return f"https://{AppConfig.PUBLIC_URL}/public/viewing-request/{token}"


class ViewingTokenService:
    """Issues, validates and deactivates viewing tokens."""

    def __init__(self, storage: Storage, ttl_days: Optional[int] = None):
        self.storage = storage
        self.ttl = timedelta(days=ttl_days or AppConfig.VIEWING_TOKEN_TTL_DAYS)

    async def issue(self, viewing_request_id: str) -> ViewingToken:
        now = utcnow()
        token = ViewingToken(
            id=generate_id(),
            token=generate_token(),
            viewing_request_id=viewing_request_id,
            expires_at=now + self.ttl,
            created_at=now,
        )
        token = await self.storage.insert_viewing_token(token)
        logger.debug("Viewing token issued", viewing_request_id=viewing_request_id, expires_at=token.expires_at.isoformat())
        return token

    async def validate(self, token: str) -> ValidatedToken:
        """Raise ForbiddenError for unknown, deactivated or expired tokens; stamp last access otherwise."""
        record = await self.storage.get_viewing_token(token)
        if record is None:
            raise ForbiddenError("Invalid or expired token")
        if not record.is_active:
            raise ForbiddenError("This link has been deactivated")
        now = utcnow()
        if record.is_expired(now):
            raise ForbiddenError("This link has expired")

        request = await self.storage.get_viewing_request(record.viewing_request_id)
        if request is None:
            raise NotFoundError("The viewing request no longer exists")
        prop = await self.storage.get_property(request.property_id)
        if prop is None:
            raise NotFoundError("Related property not found")

        record = await self.storage.update_viewing_token(record.id, {"last_accessed_at": now})
        return ValidatedToken(token=record, request=request, property=prop)

    async def deactivate(self, record: ViewingToken) -> ViewingToken:
        return await self.storage.update_viewing_token(record.id, {"is_active": False})
