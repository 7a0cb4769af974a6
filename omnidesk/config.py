import os
import re
from dataclasses import dataclass
from urllib.parse import urlsplit, urlunsplit

from dotenv import load_dotenv

load_dotenv()


def _ensure_protocol(value: str) -> str:
    trimmed = value.strip()
    if re.match(r"^https?://", trimmed, flags=re.IGNORECASE):
        return trimmed
    return f"https://{trimmed}"


def normalize_url(value: str) -> str:
    """Add a scheme when missing and strip trailing slashes."""
    return _ensure_protocol(value).rstrip("/")


def normalize_api_base_url(value: str) -> str:
    """Like normalize_url, but a bare host gets the default /api/v1 prefix."""
    normalized = normalize_url(value)
    parts = urlsplit(normalized)
    if parts.path in ("", "/"):
        return urlunsplit((parts.scheme, parts.netloc, "/api/v1", parts.query, parts.fragment))
    return normalized


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


_APP_URL = normalize_url(os.getenv("OMNIDESK_APP_URL", "http://localhost:3000"))


@dataclass(frozen=True)
class Settings:
    api_base_url: str = normalize_api_base_url(os.getenv("OMNIDESK_API_URL", "http://localhost:4000/api/v1"))
    app_url: str = _APP_URL
    request_timeout_seconds: float = float(os.getenv("OMNIDESK_REQUEST_TIMEOUT_SECONDS", "20"))

    # Token store
    token_storage_path: str = os.getenv("OMNIDESK_TOKEN_STORAGE_PATH", ".omnidesk/session.json")
    oauth_state_storage_path: str = os.getenv("OMNIDESK_OAUTH_STATE_PATH", ".omnidesk/oauth_state.json")
    cookie_max_age_seconds: int = int(os.getenv("OMNIDESK_COOKIE_MAX_AGE_SECONDS", str(15 * 60)))  # 15 minutes
    cookie_secure: bool = _env_bool("COOKIE_SECURE", _APP_URL.lower().startswith("https://"))

    # Realtime transport
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    realtime_channel_prefix: str = os.getenv("OMNIDESK_REALTIME_PREFIX", "omnidesk_rt:")
    realtime_retry_initial_seconds: float = float(os.getenv("OMNIDESK_REALTIME_RETRY_INITIAL", "1"))
    realtime_retry_max_seconds: float = float(os.getenv("OMNIDESK_REALTIME_RETRY_MAX", "30"))
    typing_expiry_seconds: float = float(os.getenv("OMNIDESK_TYPING_EXPIRY_SECONDS", "3.5"))

    # Query cache freshness
    messages_page_limit: int = int(os.getenv("OMNIDESK_MESSAGES_PAGE_LIMIT", "50"))
    channels_stale_seconds: float = float(os.getenv("OMNIDESK_CHANNELS_STALE_SECONDS", "30"))
    conversations_stale_seconds: float = float(os.getenv("OMNIDESK_CONVERSATIONS_STALE_SECONDS", "10"))
    messages_stale_seconds: float = float(os.getenv("OMNIDESK_MESSAGES_STALE_SECONDS", "10"))

    # 0 disables the AI delivery timeout
    ai_reply_timeout_seconds: float = float(os.getenv("OMNIDESK_AI_REPLY_TIMEOUT_SECONDS", "0"))

    # Public webhook receivers
    webhook_verify_token: str | None = os.getenv("META_WEBHOOK_VERIFY_TOKEN")


settings = Settings()
