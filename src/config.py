"""Runtime settings, read once from the environment at startup."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field

from src.messaging.client import DEFAULT_API_BASE_URL, DEFAULT_TIMEOUT_SECONDS
from src.messaging.retry import DEFAULT_MAX_ATTEMPTS
from src.templates.renderer import DEFAULT_WEBSITE_URL

DEFAULT_RETRY_DEADLINE = 60.0
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

ACCESS_TOKEN_VARS = (
    "LINE_CHANNEL_ACCESS_TOKEN",
    "LINE_MESSAGING_CHANNEL_ACCESS_TOKEN",
    "LINE_ACCESS_TOKEN",
)
CHANNEL_SECRET_VARS = ("LINE_CHANNEL_SECRET", "LINE_MESSAGING_CHANNEL_SECRET")


def _first(env: Mapping[str, str], names: tuple[str, ...]) -> str | None:
    for name in names:
        if env.get(name):
            return env[name]
    return None


class LineSettings(BaseModel):
    """LINE channel credentials and service tuning.

    Missing credentials leave the service running with sending disabled.
    """

    model_config = ConfigDict(frozen=True)

    channel_access_token: str | None = None
    channel_secret: str | None = None
    api_base_url: str = DEFAULT_API_BASE_URL
    webhook_base_url: str | None = None
    website_url: str = DEFAULT_WEBSITE_URL
    request_timeout: float = Field(default=DEFAULT_TIMEOUT_SECONDS, gt=0)
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)
    retry_deadline: float | None = Field(default=DEFAULT_RETRY_DEADLINE, gt=0)
    api_token: str | None = None
    audit_log_path: str | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self.channel_access_token and self.channel_secret)

    @property
    def webhook_url(self) -> str | None:
        if not self.webhook_base_url:
            return None
        return f"{self.webhook_base_url.rstrip('/')}/webhook"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> LineSettings:
        env = os.environ if env is None else env
        values: dict[str, object] = {
            "channel_access_token": _first(env, ACCESS_TOKEN_VARS),
            "channel_secret": _first(env, CHANNEL_SECRET_VARS),
            "webhook_base_url": env.get("LINE_WEBHOOK_BASE_URL") or None,
            "api_token": env.get("API_TOKEN") or None,
            "audit_log_path": env.get("AUDIT_LOG_PATH") or None,
        }
        optional = {
            "api_base_url": "LINE_API_BASE_URL",
            "website_url": "WEBSITE_URL",
            "request_timeout": "LINE_REQUEST_TIMEOUT",
            "max_attempts": "LINE_MAX_ATTEMPTS",
            "retry_deadline": "LINE_RETRY_DEADLINE",
        }
        for field, name in optional.items():
            if env.get(name):
                values[field] = env[name]
        return cls(**values)  # type: ignore[arg-type]


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # httpx logs every request line at INFO, including the URL
    logging.getLogger("httpx").setLevel(logging.WARNING)
