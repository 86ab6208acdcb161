"""Health check endpoint."""

from http.server import BaseHTTPRequestHandler
import json

from src.utils.config import AppConfig

SERVICE_NAME = "homebridge-backend"


def health_payload() -> dict:
    """Liveness body; names the configured storage backend."""
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "storage": "supabase" if AppConfig.SUPABASE_URL else "memory",
    }


class handler(BaseHTTPRequestHandler):
    """Health check handler for Vercel serverless function."""

    def do_GET(self):
        self.send_response(200)
        self.send_header('Content-Type', 'application/json')
        self.end_headers()
        self.wfile.write(json.dumps(health_payload()).encode('utf-8'))

    def do_HEAD(self):
        self.send_response(200)
        self.send_header('Content-Type', 'application/json')
        self.end_headers()
