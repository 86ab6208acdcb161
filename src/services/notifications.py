"""Real-time notification fan-out to connected users."""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional, Protocol

from src.models.events import NotificationEvent
from src.services.outcome import Outcome
from src.utils.config import AppConfig
from src.utils.ids import utcnow
from src.utils.logging import get_structured_logger, mask_user_id

logger = get_structured_logger(__name__)


class Connection(Protocol):
    """A live client socket."""

    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...


@dataclass
class _Registration:
    connection: Connection
    last_seen: datetime


class NotificationBroadcaster:
    """Best-effort push of events to connected user ids.

    Delivery is at most once per connection. Recipients that are not connected,
    or whose send fails or outlasts the send timeout, are dropped without retry.
    Sends run concurrently, so one stalled socket delays a broadcast by at most
    the send timeout.
    """

    def __init__(self, stale_seconds: Optional[int] = None, send_timeout: Optional[float] = None):
        if stale_seconds is None:
            stale_seconds = AppConfig.NOTIFICATION_STALE_SECONDS
        if send_timeout is None:
            send_timeout = AppConfig.NOTIFICATION_SEND_TIMEOUT_SECONDS
        self.stale_after = timedelta(seconds=stale_seconds)
        self.send_timeout = send_timeout
        self._connections: dict[str, list[_Registration]] = {}
        self._admin_ids: set[str] = set()

    def connect(self, user_id: str, connection: Connection, is_admin: bool = False) -> None:
        self._connections.setdefault(user_id, []).append(_Registration(connection, utcnow()))
        if is_admin:
            self._admin_ids.add(user_id)
        logger.debug("Client connected", user_id=mask_user_id(user_id), is_admin=is_admin)

    def disconnect(self, user_id: str, connection: Optional[Connection] = None) -> None:
        """Drop one connection, or every connection of the user."""
        registrations = self._connections.get(user_id, [])
        if connection is not None:
            registrations = [r for r in registrations if r.connection is not connection]
        else:
            registrations = []
        if registrations:
            self._connections[user_id] = registrations
        else:
            self._connections.pop(user_id, None)
            self._admin_ids.discard(user_id)

    def touch(self, user_id: str) -> None:
        """Heartbeat from a user's client."""
        now = utcnow()
        for registration in self._connections.get(user_id, []):
            registration.last_seen = now

    def is_connected(self, user_id: str) -> bool:
        return bool(self._connections.get(user_id))

    async def prune_stale(self) -> list[str]:
        """Close connections silent for longer than the stale window. Returns affected user ids."""
        cutoff = utcnow() - self.stale_after
        pruned: list[str] = []
        for user_id in list(self._connections):
            for registration in list(self._connections.get(user_id, [])):
                if registration.last_seen >= cutoff:
                    continue
                try:
                    await registration.connection.close()
                except Exception as e:
                    logger.debug("Closing stale connection failed", user_id=mask_user_id(user_id), error=str(e))
                self.disconnect(user_id, registration.connection)
                if user_id not in pruned:
                    pruned.append(user_id)
        if pruned:
            logger.info("Pruned stale connections", users=len(pruned))
        return pruned

    async def broadcast(self, user_ids: Iterable[str], event: NotificationEvent) -> int:
        """Send to every connected recipient. Returns the number of deliveries."""
        message = event.to_wire()
        sends = [
            self._send(user_id, registration, message)
            for user_id in dict.fromkeys(u for u in user_ids if u)
            for registration in list(self._connections.get(user_id, []))
        ]
        if not sends:
            return 0
        return sum(await asyncio.gather(*sends))

    async def _send(self, user_id: str, registration: _Registration, message: str) -> bool:
        try:
            await asyncio.wait_for(registration.connection.send(message), timeout=self.send_timeout)
            return True
        except asyncio.TimeoutError:
            error = f"send timed out after {self.send_timeout}s"
        except Exception as e:
            error = str(e)
        logger.warning(
            "Notification delivery failed, dropping connection",
            user_id=mask_user_id(user_id),
            error=error,
        )
        self.disconnect(user_id, registration.connection)
        return False

    async def broadcast_to_admins(self, event: NotificationEvent, also: Iterable[str] = ()) -> int:
        """Send to every connected admin plus any extra recipients, once each."""
        return await self.broadcast([*self._admin_ids, *also], event)

    async def dispatch(self, events: Iterable[NotificationEvent]) -> int:
        """Deliver events returned by workflow operations to their own recipients."""
        delivered = 0
        for event in events:
            if event.to_admins:
                delivered += await self.broadcast_to_admins(event, also=event.recipient_user_ids)
            else:
                delivered += await self.broadcast(event.recipient_user_ids, event)
        return delivered

    async def publish(self, result: Outcome) -> Outcome:
        """Dispatch an outcome's events and hand the outcome back."""
        if result.events:
            await self.dispatch(result.events)
        return result
