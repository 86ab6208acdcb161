"""Supabase client wrapper and the Supabase-backed Storage."""

import json
from typing import Any, Optional
from supabase import create_client, Client
from supabase.client import ClientOptions
from pydantic_core import to_jsonable_python

from src.models.activity import ActivityLogEntry
from src.models.agent_lead import AgentLead, LeadStatus
from src.models.agreement import Agreement, AgreementAdapter, AgreementType
from src.models.message import Message, SupportMessage
from src.models.property import Property
from src.models.user import User, UserRole
from src.models.viewing_request import ViewingRequest, ViewingStatus
from src.models.viewing_token import ViewingToken
from src.services.storage import Storage
from src.utils.config import AppConfig
from src.utils.errors import NotFoundError, StorageError
from src.utils.ids import utcnow
from src.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

# Global client instance (singleton pattern)
_client: Optional[Client] = None


def get_supabase_client() -> Client:
    """Get or create Supabase client singleton."""
    global _client

    if _client is None:
        url = AppConfig.SUPABASE_URL
        key = AppConfig.SUPABASE_SERVICE_ROLE_KEY

        if not url or not key:
            raise StorageError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")

        options = ClientOptions(
            auto_refresh_token=False,
            persist_session=False,
        )

        _client = create_client(url, key, options)
        logger.info("Supabase client initialized", url=url)

    return _client


class SupabaseClient:
    """Async context manager for Supabase client."""

    def __init__(self, client: Optional[Client] = None):
        self.client: Optional[Client] = client

    async def __aenter__(self) -> Client:
        if self.client is None:
            self.client = get_supabase_client()
        return self.client

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type:
            logger.error(
                "Supabase operation error",
                error=str(exc_val),
                type=exc_type.__name__,
            )
        return False


def _to_row(record) -> dict:
    return record.model_dump(mode="json")


def _jsonable(updates: dict[str, Any]) -> dict:
    return to_jsonable_python(updates, bytes_mode="base64")


def _from_row(model, row: dict):
    # Round-trip through JSON so base64 bytes and ISO timestamps validate
    return model.model_validate_json(json.dumps(row))


def _agreement_from_row(row: dict) -> Agreement:
    return AgreementAdapter.validate_json(json.dumps(row))


class SupabaseStorage(Storage):
    """Storage over Supabase tables.

    Conditional updates are filtered `update(...)` calls; the returned rows
    tell whether the filter matched.
    """

    USERS = "users"
    PROPERTIES = "properties"
    LEADS = "agent_leads"
    VIEWING_REQUESTS = "viewing_requests"
    VIEWING_TOKENS = "viewing_tokens"
    AGREEMENTS = "agreements"
    ACTIVITY = "activity_log"
    MESSAGES = "messages"
    SUPPORT_MESSAGES = "support_messages"

    def __init__(self, client: Optional[Client] = None):
        self._client = client

    def _session(self) -> SupabaseClient:
        return SupabaseClient(self._client)

    async def _select(self, table: str, filters: dict[str, Any], order: Optional[str] = None) -> list[dict]:
        async with self._session() as client:
            try:
                query = client.table(table).select("*")
                for column, value in filters.items():
                    if value is not None:
                        query = query.eq(column, value)
                if order:
                    query = query.order(order)
                result = query.execute()
                return result.data or []
            except Exception as e:
                raise StorageError(f"Failed to read {table}: {e}")

    async def _select_one(self, table: str, column: str, value: str) -> Optional[dict]:
        rows = await self._select(table, {column: value})
        return rows[0] if rows else None

    async def _insert(self, table: str, rows: list[dict]) -> list[dict]:
        async with self._session() as client:
            try:
                result = client.table(table).insert(rows).execute()
            except Exception as e:
                raise StorageError(f"Failed to insert into {table}: {e}")
            if not result.data:
                raise StorageError(f"Failed to insert into {table}: no data returned")
            return result.data

    async def _update(self, table: str, record_id: str, updates: dict[str, Any]) -> dict:
        async with self._session() as client:
            try:
                result = client.table(table).update(_jsonable(updates)).eq("id", record_id).execute()
            except Exception as e:
                raise StorageError(f"Failed to update {table}: {e}")
            if not result.data:
                raise NotFoundError(f"{table} row not found: {record_id}")
            return result.data[0]

    # Users
    async def get_user(self, user_id: str) -> Optional[User]:
        row = await self._select_one(self.USERS, "id", user_id)
        return _from_row(User, row) if row else None

    async def save_user(self, user: User) -> User:
        async with self._session() as client:
            try:
                result = client.table(self.USERS).upsert(_to_row(user)).execute()
            except Exception as e:
                raise StorageError(f"Failed to save user: {e}")
        return _from_row(User, result.data[0]) if result.data else user

    async def list_users(self, role: Optional[UserRole] = None) -> list[User]:
        rows = await self._select(self.USERS, {"role": role.value if role else None}, order="created_at")
        return [_from_row(User, row) for row in rows]

    # Properties
    async def get_property(self, property_id: str) -> Optional[Property]:
        row = await self._select_one(self.PROPERTIES, "id", property_id)
        return _from_row(Property, row) if row else None

    async def insert_property(self, prop: Property) -> Property:
        rows = await self._insert(self.PROPERTIES, [_to_row(prop)])
        return _from_row(Property, rows[0])

    async def update_property(self, property_id: str, updates: dict[str, Any]) -> Property:
        return _from_row(Property, await self._update(self.PROPERTIES, property_id, updates))

    async def delete_property(self, property_id: str) -> None:
        async with self._session() as client:
            try:
                client.table(self.PROPERTIES).delete().eq("id", property_id).execute()
            except Exception as e:
                raise StorageError(f"Failed to delete property: {e}")

    async def list_properties(self, state: Optional[str] = None) -> list[Property]:
        async with self._session() as client:
            try:
                query = client.table(self.PROPERTIES).select("*")
                if state is not None:
                    query = query.ilike("state", state)
                result = query.order("created_at").execute()
            except Exception as e:
                raise StorageError(f"Failed to list properties: {e}")
        return [_from_row(Property, row) for row in result.data or []]

    async def assign_property_agent_if_vacant(self, property_id: str, agent_id: str) -> Optional[Property]:
        async with self._session() as client:
            try:
                result = (
                    client.table(self.PROPERTIES)
                    .update({"agent_id": agent_id, "updated_at": utcnow().isoformat()})
                    .eq("id", property_id)
                    .or_(f"agent_id.is.null,agent_id.eq.{agent_id}")
                    .execute()
                )
            except Exception as e:
                raise StorageError(f"Failed to assign property agent: {e}")
        return _from_row(Property, result.data[0]) if result.data else None

    # Leads
    async def insert_leads(self, leads: list[AgentLead]) -> list[AgentLead]:
        if not leads:
            return []
        rows = await self._insert(self.LEADS, [_to_row(lead) for lead in leads])
        return [_from_row(AgentLead, row) for row in rows]

    async def get_lead(self, lead_id: str) -> Optional[AgentLead]:
        row = await self._select_one(self.LEADS, "id", lead_id)
        return _from_row(AgentLead, row) if row else None

    async def list_leads(
        self,
        property_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        status: Optional[LeadStatus] = None,
    ) -> list[AgentLead]:
        rows = await self._select(
            self.LEADS,
            {"property_id": property_id, "agent_id": agent_id, "status": status.value if status else None},
            order="created_at",
        )
        return [_from_row(AgentLead, row) for row in rows]

    async def claim_lead_if_available(self, lead_id: str, agent_id: str) -> Optional[AgentLead]:
        async with self._session() as client:
            try:
                result = (
                    client.table(self.LEADS)
                    .update({"status": LeadStatus.CLAIMED.value, "claimed_at": utcnow().isoformat()})
                    .eq("id", lead_id)
                    .eq("status", LeadStatus.AVAILABLE.value)
                    .eq("agent_id", agent_id)
                    .execute()
                )
            except Exception as e:
                raise StorageError(f"Failed to claim lead: {e}")
        return _from_row(AgentLead, result.data[0]) if result.data else None

    async def release_lead(self, lead_id: str) -> Optional[AgentLead]:
        async with self._session() as client:
            try:
                result = (
                    client.table(self.LEADS)
                    .update({"status": LeadStatus.AVAILABLE.value, "claimed_at": None})
                    .eq("id", lead_id)
                    .eq("status", LeadStatus.CLAIMED.value)
                    .execute()
                )
            except Exception as e:
                raise StorageError(f"Failed to release lead: {e}")
        return _from_row(AgentLead, result.data[0]) if result.data else None

    async def delete_leads_for_property(self, property_id: str) -> int:
        async with self._session() as client:
            try:
                result = client.table(self.LEADS).delete().eq("property_id", property_id).execute()
            except Exception as e:
                raise StorageError(f"Failed to delete leads: {e}")
        return len(result.data or [])

    # Viewing requests
    async def insert_viewing_request(self, request: ViewingRequest) -> ViewingRequest:
        rows = await self._insert(self.VIEWING_REQUESTS, [_to_row(request)])
        return _from_row(ViewingRequest, rows[0])

    async def get_viewing_request(self, request_id: str) -> Optional[ViewingRequest]:
        row = await self._select_one(self.VIEWING_REQUESTS, "id", request_id)
        return _from_row(ViewingRequest, row) if row else None

    async def update_viewing_request(self, request_id: str, updates: dict[str, Any]) -> ViewingRequest:
        return _from_row(ViewingRequest, await self._update(self.VIEWING_REQUESTS, request_id, updates))

    async def list_viewing_requests(
        self,
        property_id: Optional[str] = None,
        buyer_id: Optional[str] = None,
        status: Optional[ViewingStatus] = None,
    ) -> list[ViewingRequest]:
        rows = await self._select(
            self.VIEWING_REQUESTS,
            {"property_id": property_id, "buyer_id": buyer_id, "status": status.value if status else None},
            order="created_at",
        )
        return [_from_row(ViewingRequest, row) for row in rows]

    # Viewing tokens
    async def insert_viewing_token(self, token: ViewingToken) -> ViewingToken:
        rows = await self._insert(self.VIEWING_TOKENS, [_to_row(token)])
        return _from_row(ViewingToken, rows[0])

    async def get_viewing_token(self, token: str) -> Optional[ViewingToken]:
        row = await self._select_one(self.VIEWING_TOKENS, "token", token)
        return _from_row(ViewingToken, row) if row else None

    async def update_viewing_token(self, token_id: str, updates: dict[str, Any]) -> ViewingToken:
        return _from_row(ViewingToken, await self._update(self.VIEWING_TOKENS, token_id, updates))

    # Agreements
    async def insert_agreement(self, agreement: Agreement) -> Agreement:
        rows = await self._insert(self.AGREEMENTS, [_to_row(agreement)])
        return _agreement_from_row(rows[0])

    async def get_agreement(self, agreement_id: str) -> Optional[Agreement]:
        row = await self._select_one(self.AGREEMENTS, "id", agreement_id)
        return _agreement_from_row(row) if row else None

    async def update_agreement(self, agreement_id: str, updates: dict[str, Any]) -> Agreement:
        return _agreement_from_row(await self._update(self.AGREEMENTS, agreement_id, updates))

    async def list_agreements(
        self,
        property_id: Optional[str] = None,
        type: Optional[AgreementType] = None,
        buyer_id: Optional[str] = None,
        agent_id: Optional[str] = None,
    ) -> list[Agreement]:
        rows = await self._select(
            self.AGREEMENTS,
            {
                "property_id": property_id,
                "type": type.value if type else None,
                "buyer_id": buyer_id,
                "agent_id": agent_id,
            },
            order="created_at",
        )
        return [_agreement_from_row(row) for row in rows]

    # Messages
    async def insert_message(self, message: Message) -> Message:
        rows = await self._insert(self.MESSAGES, [_to_row(message)])
        return _from_row(Message, rows[0])

    async def get_message(self, message_id: str) -> Optional[Message]:
        row = await self._select_one(self.MESSAGES, "id", message_id)
        return _from_row(Message, row) if row else None

    async def list_messages(self, property_id: str) -> list[Message]:
        rows = await self._select(self.MESSAGES, {"property_id": property_id}, order="timestamp")
        return [_from_row(Message, row) for row in rows]

    async def mark_message_read(self, message_id: str) -> Message:
        return _from_row(Message, await self._update(self.MESSAGES, message_id, {"is_read": True}))

    async def insert_support_message(self, message: SupportMessage) -> SupportMessage:
        rows = await self._insert(self.SUPPORT_MESSAGES, [_to_row(message)])
        return _from_row(SupportMessage, rows[0])

    async def list_support_messages(self, session_id: str) -> list[SupportMessage]:
        rows = await self._select(self.SUPPORT_MESSAGES, {"session_id": session_id}, order="timestamp")
        return [_from_row(SupportMessage, row) for row in rows]

    # Activity log
    async def append_activity(self, entry: ActivityLogEntry) -> ActivityLogEntry:
        rows = await self._insert(self.ACTIVITY, [_to_row(entry)])
        return _from_row(ActivityLogEntry, rows[0])

    async def list_activity(self, property_id: str) -> list[ActivityLogEntry]:
        rows = await self._select(self.ACTIVITY, {"property_id": property_id}, order="timestamp")
        return [_from_row(ActivityLogEntry, row) for row in rows]
