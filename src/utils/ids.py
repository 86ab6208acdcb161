"""Identifier and timestamp helpers."""

import secrets
from datetime import datetime, timezone
from ulid import ULID


def generate_id() -> str:
    """Generate a text-based record ID (ULID format)."""
    return str(ULID())


def generate_token(length: int = 32) -> str:
    """Generate a random hex token (twice `length` characters)."""
    return secrets.token_hex(length)


def utcnow() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)
