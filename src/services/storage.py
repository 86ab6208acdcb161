"""Storage interface shared by every workflow service."""

from abc import ABC, abstractmethod
from typing import Any, Optional

from src.models.activity import ActivityLogEntry
from src.models.agent_lead import AgentLead, LeadStatus
from src.models.agreement import Agreement, AgreementType
from src.models.message import Message, SupportMessage
from src.models.property import Property
from src.models.user import User, UserRole
from src.models.viewing_request import ViewingRequest, ViewingStatus
from src.models.viewing_token import ViewingToken


class Storage(ABC):
    """Per-entity CRUD plus the conditional updates lead claiming needs.

    `update_*` methods take a dict of changed fields and return the stored
    record, raising NotFoundError when the id is unknown. Everything else
    reports a missing record as None.
    """

    # Users
    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    async def save_user(self, user: User) -> User:
        """Insert or replace."""

    @abstractmethod
    async def list_users(self, role: Optional[UserRole] = None) -> list[User]: ...

    # Properties
    @abstractmethod
    async def get_property(self, property_id: str) -> Optional[Property]: ...

    @abstractmethod
    async def insert_property(self, prop: Property) -> Property: ...

    @abstractmethod
    async def update_property(self, property_id: str, updates: dict[str, Any]) -> Property: ...

    @abstractmethod
    async def delete_property(self, property_id: str) -> None: ...

    @abstractmethod
    async def list_properties(self, state: Optional[str] = None) -> list[Property]:
        """Properties in creation order, optionally filtered by state (case-insensitive)."""

    @abstractmethod
    async def assign_property_agent_if_vacant(self, property_id: str, agent_id: str) -> Optional[Property]:
        """Set agent_id where it is null or already equal. None when another agent holds it."""

    # Leads
    @abstractmethod
    async def insert_leads(self, leads: list[AgentLead]) -> list[AgentLead]: ...

    @abstractmethod
    async def get_lead(self, lead_id: str) -> Optional[AgentLead]: ...

    @abstractmethod
    async def list_leads(
        self,
        property_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        status: Optional[LeadStatus] = None,
    ) -> list[AgentLead]: ...

    @abstractmethod
    async def claim_lead_if_available(self, lead_id: str, agent_id: str) -> Optional[AgentLead]:
        """Compare-and-swap available -> claimed for the lead's own agent. None if it lost."""

    @abstractmethod
    async def release_lead(self, lead_id: str) -> Optional[AgentLead]:
        """Compare-and-swap claimed -> available."""

    @abstractmethod
    async def delete_leads_for_property(self, property_id: str) -> int: ...

    # Viewing requests
    @abstractmethod
    async def insert_viewing_request(self, request: ViewingRequest) -> ViewingRequest: ...

    @abstractmethod
    async def get_viewing_request(self, request_id: str) -> Optional[ViewingRequest]: ...

    @abstractmethod
    async def update_viewing_request(self, request_id: str, updates: dict[str, Any]) -> ViewingRequest: ...

    @abstractmethod
    async def list_viewing_requests(
        self,
        property_id: Optional[str] = None,
        buyer_id: Optional[str] = None,
        status: Optional[ViewingStatus] = None,
    ) -> list[ViewingRequest]: ...

    # Viewing tokens
    @abstractmethod
    async def insert_viewing_token(self, token: ViewingToken) -> ViewingToken: ...

    @abstractmethod
    async def get_viewing_token(self, token: str) -> Optional[ViewingToken]:
        """Look up by the token string, not the record id."""

    @abstractmethod
    async def update_viewing_token(self, token_id: str, updates: dict[str, Any]) -> ViewingToken: ...

    # Agreements
    @abstractmethod
    async def insert_agreement(self, agreement: Agreement) -> Agreement: ...

    @abstractmethod
    async def get_agreement(self, agreement_id: str) -> Optional[Agreement]: ...

    @abstractmethod
    async def update_agreement(self, agreement_id: str, updates: dict[str, Any]) -> Agreement: ...

    @abstractmethod
    async def list_agreements(
        self,
        property_id: Optional[str] = None,
        type: Optional[AgreementType] = None,
        buyer_id: Optional[str] = None,
        agent_id: Optional[str] = None,
    ) -> list[Agreement]:
        """Matching agreements in creation order."""

    # Messages
    @abstractmethod
    async def insert_message(self, message: Message) -> Message: ...

    @abstractmethod
    async def get_message(self, message_id: str) -> Optional[Message]: ...

    @abstractmethod
    async def list_messages(self, property_id: str) -> list[Message]:
        """Messages on a property, oldest first."""

    @abstractmethod
    async def mark_message_read(self, message_id: str) -> Message: ...

    @abstractmethod
    async def insert_support_message(self, message: SupportMessage) -> SupportMessage: ...

    @abstractmethod
    async def list_support_messages(self, session_id: str) -> list[SupportMessage]:
        """One support conversation, oldest first."""

    # Activity log
    @abstractmethod
    async def append_activity(self, entry: ActivityLogEntry) -> ActivityLogEntry: ...

    @abstractmethod
    async def list_activity(self, property_id: str) -> list[ActivityLogEntry]:
        """Entries for a property, oldest first."""
