"""Tests for health check endpoint."""

import pytest
import json
from io import BytesIO
from unittest.mock import Mock, patch
from http.server import BaseHTTPRequestHandler

from api.health import handler, health_payload
from src.utils.config import AppConfig


class MockSocket:
    """Minimal socket; the handler parses the request line on construction."""

    def __init__(self, request: bytes):
        self.request = request

    def makefile(self, *args, **kwargs):
        return BytesIO(self.request)

    def sendall(self, data):
        pass

    def close(self):
        pass


def _handler(request: bytes):
    h = handler(MockSocket(request), ("127.0.0.1", 8000), None)
    h.wfile = BytesIO()
    h.send_response = Mock()
    h.send_header = Mock()
    h.end_headers = Mock()
    return h


@pytest.mark.unit
def test_health_handler_class():
    """Test that handler is a BaseHTTPRequestHandler subclass."""
    assert issubclass(handler, BaseHTTPRequestHandler)


@pytest.mark.unit
def test_health_get_request():
    """Test GET request to health endpoint."""
    h = _handler(b"GET /api/health HTTP/1.1\r\n\r\n")

    h.do_GET()

    assert h.send_response.call_args[0][0] == 200
    h.send_header.assert_called_with('Content-Type', 'application/json')

    h.wfile.seek(0)
    response_data = json.loads(h.wfile.read().decode('utf-8'))
    assert response_data["status"] == "ok"
    assert response_data["service"] == "homebridge-backend"


@pytest.mark.unit
def test_health_head_request_has_no_body():
    """Test HEAD request returns headers only."""
    h = _handler(b"HEAD /api/health HTTP/1.1\r\n\r\n")

    h.do_HEAD()

    assert h.send_response.call_args[0][0] == 200
    assert h.wfile.getvalue() == b""


@pytest.mark.unit
def test_health_payload_reports_storage_backend():
    """Test payload names memory storage without Supabase and supabase with it."""
    with patch.object(AppConfig, "SUPABASE_URL", None):
        assert health_payload()["storage"] == "memory"
    with patch.object(AppConfig, "SUPABASE_URL", "https://example.supabase.co"):
        assert health_payload()["storage"] == "supabase"
