"""Append-only activity log written behind each workflow action."""

from typing import Any, Optional

from src.models.activity import ActivityLogEntry
from src.services.storage import Storage
from src.utils.ids import generate_id, utcnow
from src.utils.logging import get_structured_logger, get_correlation_id

logger = get_structured_logger(__name__)


class ActivityLedger:
    """Records who touched a property and what happened.

    Writes are best effort: a failed append is logged and never fails the
    action that produced it.
    """

    def __init__(self, storage: Storage):
        self.storage = storage

    async def record(
        self,
        property_id: Optional[str],
        actor_id: Optional[str],
        activity: str,
        **details: Any,
    ) -> Optional[ActivityLogEntry]:
        """Append one entry. Returns None when skipped or when the write failed."""
        if not property_id:
            # Agent-level agreements have no property to log against
            return None

        entry = ActivityLogEntry(
            id=generate_id(),
            property_id=property_id,
            actor_id=actor_id,
            activity=activity,
            details=details,
            timestamp=utcnow(),
        )
        try:
            return await self.storage.append_activity(entry)
        except Exception as e:
            logger.warning(
                "Failed to record activity",
                correlation_id=get_correlation_id(),
                property_id=property_id,
                activity=activity,
                error=str(e),
            )
            return None

    async def history(self, property_id: str) -> list[ActivityLogEntry]:
        """Entries for a property, oldest first."""
        return await self.storage.list_activity(property_id)
