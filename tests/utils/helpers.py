"""Test helpers: fake collaborators, connections and handler plumbing."""

import asyncio
from io import BytesIO
from typing import Optional
from unittest.mock import Mock

from src.models.agreement import AgreementType, SignatureSlot
from src.services.collaborators import VerificationCheck, VerificationSession
from src.services.memory_storage import InMemoryStorage
from src.utils.errors import ExternalServiceError


def seed(storage, record):
    """Put a user or property straight into InMemoryStorage."""
    table = storage.users if hasattr(record, "role") else storage.properties
    table[record.id] = record
    return record


class FakeRenderer:
    """DocumentRenderer that records calls and returns readable bytes."""

    def __init__(self):
        self.fills: list[tuple[AgreementType, dict, Optional[bytes]]] = []
        self.overlays: list[SignatureSlot] = []

    def fill(self, kind, field_values, prior_bytes=None) -> bytes:
        self.fills.append((kind, field_values, prior_bytes))
        return (prior_bytes or b"") + f"{kind.value}:{field_values['id']}".encode()

    def overlay_signature(self, document, signature, slot) -> bytes:
        self.overlays.append(slot)
        return document + f"|{slot.value}".encode()


class FailingRenderer(FakeRenderer):
    """Renderer whose fill always fails."""

    def fill(self, kind, field_values, prior_bytes=None) -> bytes:
        raise ExternalServiceError("renderer offline")


class RecordingConnection:
    """Connection that keeps every message it was sent."""

    def __init__(self):
        self.messages: list[str] = []
        self.closed = False

    async def send(self, message: str) -> None:
        self.messages.append(message)

    async def close(self) -> None:
        self.closed = True


class BrokenConnection(RecordingConnection):
    """Connection whose socket has gone away."""

    async def send(self, message: str) -> None:
        raise ConnectionResetError("socket closed")


class HangingConnection(RecordingConnection):
    """Connection whose peer stopped reading; sends never finish."""

    async def send(self, message: str) -> None:
        await asyncio.sleep(3600)


class YieldingStorage(InMemoryStorage):
    """InMemoryStorage that yields to the event loop before each claim step.

    Lets `asyncio.gather` interleave claims the way concurrent requests would.
    `calls` records the order the steps ran in.
    """

    def __init__(self):
        super().__init__()
        self.calls: list[tuple[str, str]] = []

    async def get_lead(self, lead_id):
        await asyncio.sleep(0)
        self.calls.append(("get_lead", lead_id))
        return await super().get_lead(lead_id)

    async def claim_lead_if_available(self, lead_id, agent_id):
        await asyncio.sleep(0)
        self.calls.append(("claim_lead_if_available", lead_id))
        return await super().claim_lead_if_available(lead_id, agent_id)

    async def assign_property_agent_if_vacant(self, property_id, agent_id):
        await asyncio.sleep(0)
        self.calls.append(("assign_property_agent_if_vacant", agent_id))
        return await super().assign_property_agent_if_vacant(property_id, agent_id)


class FakeRanker:
    """AgentRanker that reverses the candidates."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = 0

    async def rank(self, prop, agents):
        self.calls += 1
        if self.fail:
            raise ExternalServiceError("ranker offline")
        return list(reversed(agents))


class FakeVerifier:
    """IdentityVerification with a scripted decision."""

    def __init__(self, check: VerificationCheck = VerificationCheck.APPROVED):
        self.check = check
        self.started: list[str] = []

    async def start_session(self, user) -> VerificationSession:
        self.started.append(user.id)
        return VerificationSession(url=f"https://verify.test/{user.id}", session_id=f"sess-{user.id}")

    async def check_status(self, session_id: str) -> VerificationCheck:
        return self.check


class MockSocket:
    """Mock socket for handler testing."""

    def __init__(self, request_bytes: bytes = b""):
        self.request_bytes = request_bytes

    def makefile(self, mode, *args, **kwargs):
        if "r" in mode:
            return BytesIO(self.request_bytes)
        return BytesIO()


def run_handler(handler_cls, method: str, path: str, body: bytes = b""):
    """Build a handler without a server, call one method and capture the response."""
    handler = object.__new__(handler_cls)
    handler.rfile = BytesIO(body)
    handler.wfile = BytesIO()
    handler.path = path
    handler.command = method
    handler.headers = {"Content-Length": str(len(body))}
    handler.send_response = Mock()
    handler.send_header = Mock()
    handler.end_headers = Mock()
    getattr(handler, f"do_{method}")()
    return handler
