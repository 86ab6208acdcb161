"""Application settings read from environment variables."""

import os


def _flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() == "true"


class AppConfig:
    """Centralized application configuration."""

    # Supabase
    SUPABASE_URL = os.environ.get("SUPABASE_URL")
    SUPABASE_SERVICE_ROLE_KEY = os.environ.get("SUPABASE_SERVICE_ROLE_KEY")
    SUPABASE_DOCUMENTS_BUCKET = os.environ.get("SUPABASE_DOCUMENTS_BUCKET", "agreements")

    # Lead allocation
    LEAD_CANDIDATE_LIMIT = int(os.environ.get("LEAD_CANDIDATE_LIMIT", "3"))
    USE_LLM_RANKER = _flag("USE_LLM_RANKER", "false")

    # Viewing requests
    VIEWING_TOKEN_TTL_DAYS = int(os.environ.get("VIEWING_TOKEN_TTL_DAYS", "7"))
    PUBLIC_URL = os.environ.get("PUBLIC_URL", "localhost:5000")
    VIEWING_COMPLETION_REQUIRES_DISCLOSURE = _flag("VIEWING_COMPLETION_REQUIRES_DISCLOSURE", "true")

    # Identity verification
    VERIFF_API_KEY = os.environ.get("VERIFF_API_KEY")
    VERIFF_BASE_URL = os.environ.get("VERIFF_BASE_URL", "https://stationapi.veriff.com/v1")
    VERIFF_CALLBACK_URL = os.environ.get("VERIFF_CALLBACK_URL")
    VERIFF_TIMEOUT_SECONDS = float(os.environ.get("VERIFF_TIMEOUT_SECONDS", "10"))

    # Notifications
    NOTIFICATION_STALE_SECONDS = int(os.environ.get("NOTIFICATION_STALE_SECONDS", "60"))
    NOTIFICATION_SEND_TIMEOUT_SECONDS = float(os.environ.get("NOTIFICATION_SEND_TIMEOUT_SECONDS", "5"))

    # LLM collaborators
    LLM_PROVIDER = os.environ.get("LLM_PROVIDER", "anthropic").lower()
    LLM_MODEL = os.environ.get("LLM_MODEL", "claude-sonnet-4-20250514")
