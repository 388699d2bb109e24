"""Settings for the helpdesk core library.

All tunables live in one place so the retry, cache, debounce and auth-guard
constants are picked once instead of drifting per component.

Environment Variables:
    HELPDESK_BACKEND_URL: Hosted backend base URL (e.g. https://project.example.co)
    HELPDESK_ANON_KEY: Public API key sent as the ``apikey`` header
    HELPDESK_APP_URL: Frontend URL used to build case links in emails
    HELPDESK_ATTACHMENTS_BUCKET: Object storage bucket (default: "case-attachments")
    HELPDESK_NOTIFICATION_FUNCTION: Edge function name (default: "send-case-notification")
    HELPDESK_REQUEST_TIMEOUT: HTTP timeout in seconds (default: 10)
    HELPDESK_RETRY_MAX_ATTEMPTS, HELPDESK_RETRY_INITIAL_DELAY,
    HELPDESK_RETRY_MAX_JITTER, HELPDESK_RETRY_MAX_DELAY, HELPDESK_RETRY_TOTAL_BUDGET
    HELPDESK_CACHE_TTL_SECONDS: Snapshot freshness window (default: 300)
    HELPDESK_DEBOUNCE_SECONDS: Refresh debounce window (default: 0.5)
    HELPDESK_CACHE_NAMESPACE: Key prefix for cache/outbox/auth-health keys
    HELPDESK_LOCAL_STATE_PATH: JSON file for auth-health metadata (optional)
"""

import logging
import os
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


DEFAULT_ALLOWED_CONTENT_TYPES: List[str] = [
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "application/pdf",
    "text/plain",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
]


class HelpdeskSettings(BaseModel):
    """Connection details and resilience tunables."""

    # Hosted backend
    backend_url: str = Field("http://localhost:54321", description="Backend base URL")
    anon_key: str = Field("", description="Public API key")
    app_url: str = Field("http://localhost:3000", description="Frontend base URL")
    attachments_bucket: str = "case-attachments"
    notification_function: str = "send-case-notification"
    request_timeout: float = Field(10.0, gt=0)

    # Retry policy: 0.3s, 0.6s (+ up to 0.3s jitter each) keeps a failed
    # action under ~1.5s end to end
    retry_max_attempts: int = 3
    retry_initial_delay: float = Field(0.3, ge=0)
    retry_max_jitter: float = Field(0.3, ge=0)
    retry_max_delay: float = Field(30.0, gt=0)
    retry_total_budget: float = Field(5.0, gt=0)

    # Thread view
    cache_ttl_seconds: float = Field(300.0, gt=0)
    debounce_seconds: float = Field(0.5, ge=0)
    max_replay_attempts: int = Field(5, ge=1)
    cache_namespace: str = "helpdesk"

    # Attachments
    max_upload_bytes: int = 10 * 1024 * 1024
    allowed_content_types: List[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_CONTENT_TYPES)
    )
    signed_url_ttl_seconds: int = Field(3600, ge=60, le=3600 * 24)

    # Auth session guard
    auth_init_threshold: int = 5
    auth_init_window_seconds: float = 60.0
    auth_error_threshold: int = 3
    auth_cooldown_minutes: float = 1.0
    auth_success_grace_seconds: float = 10.0
    token_stale_seconds: float = 600.0
    session_refresh_buffer_seconds: float = 60.0
    local_state_path: Optional[str] = None

    @property
    def rest_url(self) -> str:
        return f"{self.backend_url.rstrip('/')}/rest/v1"

    @property
    def storage_url(self) -> str:
        return f"{self.backend_url.rstrip('/')}/storage/v1"

    @property
    def auth_url(self) -> str:
        return f"{self.backend_url.rstrip('/')}/auth/v1"

    @property
    def functions_url(self) -> str:
        return f"{self.backend_url.rstrip('/')}/functions/v1"

    def case_link(self, case_id: str) -> str:
        """Frontend URL for a case detail page."""
        return f"{self.app_url.rstrip('/')}/cases/{case_id}"

    @classmethod
    def from_env(cls, **overrides: Any) -> "HelpdeskSettings":
        """Build settings from ``HELPDESK_*`` environment variables.

        Explicit keyword overrides take precedence over the environment.
        Values that fail to parse are logged and replaced by the default.
        """
        load_dotenv()

        values: Dict[str, Any] = {}
        for name, field in cls.model_fields.items():
            if name in overrides:
                continue
            env_key = f"HELPDESK_{name.upper()}"
            raw = os.getenv(env_key)
            if raw is None or raw == "":
                continue

            if name == "allowed_content_types":
                values[name] = [t.strip() for t in raw.split(",") if t.strip()]
                continue

            annotation = field.annotation
            try:
                if annotation is int:
                    values[name] = int(raw)
                elif annotation is float:
                    values[name] = float(raw)
                else:
                    values[name] = raw
            except ValueError:
                logger.warning(f"Invalid value in {env_key}: {raw!r}, using default")

        values.update(overrides)
        return cls(**values)


# Lazily created settings for global access
_settings_instance: Optional[HelpdeskSettings] = None


def get_settings() -> HelpdeskSettings:
    """Get or create the process-wide settings built from the environment."""
    global _settings_instance

    if _settings_instance is None:
        _settings_instance = HelpdeskSettings.from_env()

    return _settings_instance


def reset_settings() -> None:
    """Drop cached settings so the next call re-reads the environment."""
    global _settings_instance
    _settings_instance = None
    logger.debug("Helpdesk settings reset")
