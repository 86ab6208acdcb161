"""In-process storage for development and tests."""

import threading
from typing import Any, Optional

from src.models.activity import ActivityLogEntry
from src.models.agent_lead import AgentLead, LeadStatus
from src.models.agreement import Agreement, AgreementType
from src.models.message import Message, SupportMessage
from src.models.property import Property
from src.models.user import User, UserRole
from src.models.viewing_request import ViewingRequest, ViewingStatus
from src.models.viewing_token import ViewingToken
from src.services.storage import Storage
from src.utils.errors import NotFoundError
from src.utils.ids import utcnow


def _merged(record, updates: dict[str, Any]):
    data = record.model_dump()
    data.update(updates)
    return type(record).model_validate(data)


class InMemoryStorage(Storage):
    """Dict-backed Storage. One lock makes each write, and each conditional update, atomic."""

    def __init__(self):
        self._lock = threading.Lock()
        self.users: dict[str, User] = {}
        self.properties: dict[str, Property] = {}
        self.leads: dict[str, AgentLead] = {}
        self.viewing_requests: dict[str, ViewingRequest] = {}
        self.viewing_tokens: dict[str, ViewingToken] = {}
        self.agreements: dict[str, Agreement] = {}
        self.activity: list[ActivityLogEntry] = []
        self.messages: dict[str, Message] = {}
        self.support_messages: list[SupportMessage] = []

    def _update(self, table: dict, record_id: str, updates: dict[str, Any], label: str):
        with self._lock:
            current = table.get(record_id)
            if current is None:
                raise NotFoundError(f"{label} not found: {record_id}")
            table[record_id] = _merged(current, updates)
            return table[record_id]

    # Users
    async def get_user(self, user_id: str) -> Optional[User]:
        return self.users.get(user_id)

    async def save_user(self, user: User) -> User:
        with self._lock:
            self.users[user.id] = user
        return user

    async def list_users(self, role: Optional[UserRole] = None) -> list[User]:
        return [u for u in self.users.values() if role is None or u.role == role]

    # Properties
    async def get_property(self, property_id: str) -> Optional[Property]:
        return self.properties.get(property_id)

    async def insert_property(self, prop: Property) -> Property:
        with self._lock:
            self.properties[prop.id] = prop
        return prop

    async def update_property(self, property_id: str, updates: dict[str, Any]) -> Property:
        return self._update(self.properties, property_id, updates, "Property")

    async def delete_property(self, property_id: str) -> None:
        with self._lock:
            self.properties.pop(property_id, None)

    async def list_properties(self, state: Optional[str] = None) -> list[Property]:
        props = list(self.properties.values())
        if state is None:
            return props
        return [p for p in props if (p.state or "").lower() == state.lower()]

    async def assign_property_agent_if_vacant(self, property_id: str, agent_id: str) -> Optional[Property]:
        with self._lock:
            prop = self.properties.get(property_id)
            if prop is None or prop.agent_id not in (None, agent_id):
                return None
            prop = prop.model_copy(update={"agent_id": agent_id, "updated_at": utcnow()})
            self.properties[property_id] = prop
            return prop

    # Leads
    async def insert_leads(self, leads: list[AgentLead]) -> list[AgentLead]:
        with self._lock:
            for lead in leads:
                self.leads[lead.id] = lead
        return leads

    async def get_lead(self, lead_id: str) -> Optional[AgentLead]:
        return self.leads.get(lead_id)

    async def list_leads(
        self,
        property_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        status: Optional[LeadStatus] = None,
    ) -> list[AgentLead]:
        return [
            lead for lead in self.leads.values()
            if (property_id is None or lead.property_id == property_id)
            and (agent_id is None or lead.agent_id == agent_id)
            and (status is None or lead.status == status)
        ]

    async def claim_lead_if_available(self, lead_id: str, agent_id: str) -> Optional[AgentLead]:
        with self._lock:
            lead = self.leads.get(lead_id)
            if lead is None or lead.status != LeadStatus.AVAILABLE or lead.agent_id != agent_id:
                return None
            lead = lead.model_copy(update={"status": LeadStatus.CLAIMED, "claimed_at": utcnow()})
            self.leads[lead_id] = lead
            return lead

    async def release_lead(self, lead_id: str) -> Optional[AgentLead]:
        with self._lock:
            lead = self.leads.get(lead_id)
            if lead is None or lead.status != LeadStatus.CLAIMED:
                return None
            lead = lead.model_copy(update={"status": LeadStatus.AVAILABLE, "claimed_at": None})
            self.leads[lead_id] = lead
            return lead

    async def delete_leads_for_property(self, property_id: str) -> int:
        with self._lock:
            doomed = [lid for lid, lead in self.leads.items() if lead.property_id == property_id]
            for lead_id in doomed:
                del self.leads[lead_id]
        return len(doomed)

    # Viewing requests
    async def insert_viewing_request(self, request: ViewingRequest) -> ViewingRequest:
        with self._lock:
            self.viewing_requests[request.id] = request
        return request

    async def get_viewing_request(self, request_id: str) -> Optional[ViewingRequest]:
        return self.viewing_requests.get(request_id)

    async def update_viewing_request(self, request_id: str, updates: dict[str, Any]) -> ViewingRequest:
        return self._update(self.viewing_requests, request_id, updates, "Viewing request")

    async def list_viewing_requests(
        self,
        property_id: Optional[str] = None,
        buyer_id: Optional[str] = None,
        status: Optional[ViewingStatus] = None,
    ) -> list[ViewingRequest]:
        return [
            r for r in self.viewing_requests.values()
            if (property_id is None or r.property_id == property_id)
            and (buyer_id is None or r.buyer_id == buyer_id)
            and (status is None or r.status == status)
        ]

    # Viewing tokens
    async def insert_viewing_token(self, token: ViewingToken) -> ViewingToken:
        with self._lock:
            self.viewing_tokens[token.id] = token
        return token

    async def get_viewing_token(self, token: str) -> Optional[ViewingToken]:
        return next((t for t in self.viewing_tokens.values() if t.token == token), None)

    async def update_viewing_token(self, token_id: str, updates: dict[str, Any]) -> ViewingToken:
        return self._update(self.viewing_tokens, token_id, updates, "Viewing token")

    # Agreements
    async def insert_agreement(self, agreement: Agreement) -> Agreement:
        with self._lock:
            self.agreements[agreement.id] = agreement
        return agreement

    async def get_agreement(self, agreement_id: str) -> Optional[Agreement]:
        return self.agreements.get(agreement_id)

    async def update_agreement(self, agreement_id: str, updates: dict[str, Any]) -> Agreement:
        return self._update(self.agreements, agreement_id, updates, "Agreement")

    async def list_agreements(
        self,
        property_id: Optional[str] = None,
        type: Optional[AgreementType] = None,
        buyer_id: Optional[str] = None,
        agent_id: Optional[str] = None,
    ) -> list[Agreement]:
        return [
            a for a in self.agreements.values()
            if (property_id is None or a.property_id == property_id)
            and (type is None or a.type == type)
            and (buyer_id is None or a.buyer_id == buyer_id)
            and (agent_id is None or a.agent_id == agent_id)
        ]

    # Messages
    async def insert_message(self, message: Message) -> Message:
        with self._lock:
            self.messages[message.id] = message
        return message

    async def get_message(self, message_id: str) -> Optional[Message]:
        return self.messages.get(message_id)

    async def list_messages(self, property_id: str) -> list[Message]:
        return sorted(
            (m for m in self.messages.values() if m.property_id == property_id),
            key=lambda m: m.timestamp,
        )

    async def mark_message_read(self, message_id: str) -> Message:
        return self._update(self.messages, message_id, {"is_read": True}, "Message")

    async def insert_support_message(self, message: SupportMessage) -> SupportMessage:
        with self._lock:
            self.support_messages.append(message)
        return message

    async def list_support_messages(self, session_id: str) -> list[SupportMessage]:
        return [m for m in self.support_messages if m.session_id == session_id]

    # Activity log
    async def append_activity(self, entry: ActivityLogEntry) -> ActivityLogEntry:
        with self._lock:
            self.activity.append(entry)
        return entry

    async def list_activity(self, property_id: str) -> list[ActivityLogEntry]:
        return [e for e in self.activity if e.property_id == property_id]
