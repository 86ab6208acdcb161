"""Tests for the public viewing link endpoint."""

import json
import pytest
from datetime import timedelta
from unittest.mock import patch

from api.viewing.respond import handler, outcome_response
from src.models.viewing_request import ApprovalSource, ApprovalStatus, ViewingRequest
from src.models.viewing_token import ViewingToken
from src.services.outcome import Outcome
from src.utils.errors import StateConflictError
from src.utils.ids import utcnow
from tests.utils.factories import make_property, make_window
from tests.utils.helpers import RecordingConnection, run_handler, seed


@pytest.fixture
def linked_request(storage, buyer, seller, agent):
    """Pending request with an active public token."""
    prop = seed(storage, make_property(buyer.id, agent_id=agent.id, seller_id=seller.id))
    request = ViewingRequest(id="vr_1", property_id=prop.id, buyer_id=buyer.id, requested=make_window())
    storage.viewing_requests[request.id] = request
    token = ViewingToken(
        id="tok_1", token="a" * 64, viewing_request_id=request.id, expires_at=utcnow() + timedelta(days=7)
    )
    storage.viewing_tokens[token.id] = token
    return request, token


def _body(h) -> dict:
    return json.loads(h.wfile.getvalue().decode("utf-8"))


@pytest.mark.unit
def test_outcome_response_maps_kinds():
    """Test error kinds map onto HTTP statuses."""
    status, body = outcome_response(Outcome.failure(StateConflictError("taken", existing_id="x")))

    assert status == 409
    assert body == {"success": False, "kind": "state_conflict", "error": "taken", "existing_id": "x"}
    assert outcome_response(Outcome.success({"a": 1})) == (200, {"success": True, "data": {"a": 1}})


@pytest.mark.unit
def test_get_shows_request(app, linked_request):
    """Test a valid token returns the request and property."""
    request, token = linked_request
    with patch("api.viewing.respond._load_app", return_value=app):
        h = run_handler(handler, "GET", f"/api/viewing/respond?token={token.token}")

    assert h.send_response.call_args[0][0] == 200
    data = _body(h)["data"]
    assert data["viewing_request"]["id"] == request.id
    assert data["property"]["id"] == request.property_id


@pytest.mark.unit
def test_get_without_token(app):
    """Test a missing token is a bad request."""
    with patch("api.viewing.respond._load_app", return_value=app):
        h = run_handler(handler, "GET", "/api/viewing/respond")

    assert h.send_response.call_args[0][0] == 400


@pytest.mark.unit
def test_get_unknown_token_is_forbidden(app, linked_request):
    """Test unknown tokens map to 403."""
    with patch("api.viewing.respond._load_app", return_value=app):
        h = run_handler(handler, "GET", "/api/viewing/respond?token=nope")

    assert h.send_response.call_args[0][0] == 403
    assert _body(h)["kind"] == "forbidden"


@pytest.mark.unit
def test_post_accept_records_approval_and_notifies(app, storage, broadcaster, buyer, linked_request):
    """Test accepting via the link approves the seller side and pushes an event."""
    request, token = linked_request
    conn = RecordingConnection()
    broadcaster.connect(buyer.id, conn)
    body = json.dumps({"token": token.token, "decision": "accepted", "message": "See you then"}).encode()

    with patch("api.viewing.respond._load_app", return_value=app):
        h = run_handler(handler, "POST", "/api/viewing/respond", body)

    assert h.send_response.call_args[0][0] == 200
    stored = storage.viewing_requests[request.id]
    assert stored.seller_agent_approval.status == ApprovalStatus.APPROVED
    assert stored.seller_agent_approval.source == ApprovalSource.PUBLIC_VIEWING_PAGE
    assert not storage.viewing_tokens[token.id].is_active
    assert len(conn.messages) == 1


@pytest.mark.unit
def test_post_invalid_window(app, linked_request):
    """Test a confirmed window ending before it starts is rejected."""
    _, token = linked_request
    start = utcnow()
    body = json.dumps({
        "token": token.token,
        "decision": "rescheduled",
        "confirmed": {"start": start.isoformat(), "end": (start - timedelta(hours=1)).isoformat()},
    }).encode()

    with patch("api.viewing.respond._load_app", return_value=app):
        h = run_handler(handler, "POST", "/api/viewing/respond", body)

    assert h.send_response.call_args[0][0] == 400


@pytest.mark.unit
def test_post_unknown_decision(app, linked_request):
    """Test decisions outside accept/reject/reschedule are a validation error."""
    _, token = linked_request
    body = json.dumps({"token": token.token, "decision": "completed"}).encode()

    with patch("api.viewing.respond._load_app", return_value=app):
        h = run_handler(handler, "POST", "/api/viewing/respond", body)

    assert h.send_response.call_args[0][0] == 400
    assert _body(h)["kind"] == "validation"


@pytest.mark.unit
def test_post_unexpected_failure_is_500(linked_request):
    """Test errors outside the taxonomy become a generic 500."""
    _, token = linked_request
    body = json.dumps({"token": token.token, "decision": "accepted"}).encode()

    with patch("api.viewing.respond._load_app", side_effect=RuntimeError("no config")):
        h = run_handler(handler, "POST", "/api/viewing/respond", body)

    assert h.send_response.call_args[0][0] == 500
    assert _body(h)["success"] is False
