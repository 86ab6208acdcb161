"""Discriminated result returned by workflow operations."""

from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Callable, Generic, Optional, TypeVar

from src.models.events import NotificationEvent
from src.utils.errors import HomeBridgeError, StorageError
from src.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

T = TypeVar("T")


@dataclass
class Outcome(Generic[T]):
    """Success value or a taxonomy error, plus the events the operation produced.

    `deferred_error` reports a best-effort step (document rendering) that failed
    after the state change was committed.
    """
    ok: bool
    value: Optional[T] = None
    error: Optional[HomeBridgeError] = None
    events: list[NotificationEvent] = field(default_factory=list)
    deferred_error: Optional[HomeBridgeError] = None

    @classmethod
    def success(
        cls,
        value: Any = None,
        events: Optional[list[NotificationEvent]] = None,
        deferred_error: Optional[HomeBridgeError] = None,
    ) -> "Outcome":
        return cls(ok=True, value=value, events=list(events or []), deferred_error=deferred_error)

    @classmethod
    def failure(cls, error: HomeBridgeError) -> "Outcome":
        return cls(ok=False, error=error)

    @property
    def kind(self) -> Optional[str]:
        return self.error.kind if self.error else None

    def unwrap(self) -> T:
        """Return the value or raise the error."""
        if not self.ok:
            raise self.error
        return self.value


def outcome(func: Callable) -> Callable:
    """Convert taxonomy errors raised by an async operation into an Outcome.

    StorageError and anything outside the taxonomy propagate.
    """
    @wraps(func)
    async def wrapper(*args, **kwargs) -> Outcome:
        try:
            result = await func(*args, **kwargs)
        except StorageError:
            raise
        except HomeBridgeError as e:
            logger.info(
                f"{func.__name__} refused",
                operation=func.__name__,
                error_kind=e.kind,
                error=e.message,
            )
            return Outcome.failure(e)
        if isinstance(result, Outcome):
            return result
        return Outcome.success(result)

    return wrapper
