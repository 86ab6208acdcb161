"""Error handling utilities."""

from typing import Optional


class HomeBridgeError(Exception):
    """Base exception for HomeBridge backend."""
    kind: str = "error"

    def __init__(self, message: str = "", **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        """Serializable form for API responses."""
        return {"kind": self.kind, "error": self.message, **self.details}


class ValidationError(HomeBridgeError):
    """Malformed or missing input, rejected before touching state."""
    kind = "validation"


class ForbiddenError(HomeBridgeError):
    """Actor is not allowed to perform the action."""
    kind = "forbidden"


class BrbcRequiredError(ForbiddenError):
    """Buyer must sign a global BRBC with the property's agent first."""

    def __init__(self, agent_id: str, message: Optional[str] = None):
        super().__init__(
            message or "A signed Buyer Representation and Brokerage Confirmation is required with this agent",
            requires_brbc=True,
            agent_id=agent_id,
        )
        self.agent_id = agent_id
        self.requires_brbc = True


class NotFoundError(HomeBridgeError):
    """Referenced entity does not exist."""
    kind = "not_found"


class StateConflictError(HomeBridgeError):
    """Requested transition is illegal from the current state."""
    kind = "state_conflict"

    def __init__(self, message: str = "", existing_id: Optional[str] = None, **details):
        if existing_id is not None:
            details["existing_id"] = existing_id
        super().__init__(message, **details)
        self.existing_id = existing_id


class ExternalServiceError(HomeBridgeError):
    """A collaborator (verification, extraction, rendering, storage) failed."""
    kind = "external_service"


class StorageError(HomeBridgeError):
    """Storage operation error."""
    kind = "storage"
