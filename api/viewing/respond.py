"""Public viewing link endpoint for Vercel: listing agents answer without an account."""

from http.server import BaseHTTPRequestHandler
from urllib.parse import urlparse, parse_qs
import asyncio
import json
import logging

from pydantic import ValidationError as PydanticValidationError

from src.utils.logging import correlation_context, correlation_id_from_headers

_logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    "validation": 400,
    "forbidden": 403,
    "not_found": 404,
    "state_conflict": 409,
    "external_service": 502,
}


def _load_app():
    """Lazy load services to avoid import errors at cold start."""
    from src.services.app import get_app
    return get_app()


def outcome_response(result) -> tuple[int, dict]:
    """HTTP status and JSON body for an Outcome."""
    if not result.ok:
        return STATUS_BY_KIND.get(result.kind, 500), {"success": False, **result.error.to_dict()}
    value = result.value
    if hasattr(value, "model_dump"):
        data = value.model_dump(mode="json")
    elif isinstance(value, dict):
        data = {k: v.model_dump(mode="json") if hasattr(v, "model_dump") else v for k, v in value.items()}
    else:
        data = value
    return 200, {"success": True, "data": data}


class handler(BaseHTTPRequestHandler):
    """GET shows the request behind a token; POST records the listing side's answer."""

    def _send(self, status: int, body: dict) -> None:
        self.send_response(status)
        self.send_header('Content-Type', 'application/json')
        self.end_headers()
        self.wfile.write(json.dumps(body).encode('utf-8'))

    def _token(self) -> str:
        query = parse_qs(urlparse(self.path).query)
        return (query.get("token") or [""])[0]

    def do_GET(self):
        token = self._token()
        if not token:
            self._send(400, {"success": False, "error": "Invalid token"})
            return
        try:
            app = _load_app()
            with correlation_context(correlation_id_from_headers(self.headers)):
                result = asyncio.run(app.viewings.view_by_token(token))
        except Exception as e:
            _logger.error(f"Viewing link lookup failed: {e}")
            self._send(500, {"success": False, "error": "Failed to get viewing request information"})
            return
        self._send(*outcome_response(result))

    def do_POST(self):
        from src.models.viewing_request import TimeWindow

        content_length = int(self.headers.get('Content-Length', 0))
        raw_body = self.rfile.read(content_length).decode('utf-8') if content_length > 0 else ""
        try:
            body = json.loads(raw_body) if raw_body else {}
        except json.JSONDecodeError:
            body = {}

        token = body.get("token") or self._token()
        if not token:
            self._send(400, {"success": False, "error": "Invalid token"})
            return

        try:
            confirmed = TimeWindow.model_validate(body["confirmed"]) if body.get("confirmed") else None
        except PydanticValidationError as e:
            self._send(400, {"success": False, "kind": "validation", "error": str(e)})
            return

        try:
            app = _load_app()
            with correlation_context(correlation_id_from_headers(self.headers)):
                result = asyncio.run(app.run(app.viewings.respond_via_token(
                    token,
                    body.get("decision", ""),
                    confirmed=confirmed,
                    message=body.get("message"),
                )))
        except Exception as e:
            _logger.error(f"Viewing link response failed: {e}")
            self._send(500, {"success": False, "error": "Failed to respond to viewing request"})
            return
        self._send(*outcome_response(result))
