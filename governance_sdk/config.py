"""
Governance SDK — Configuration

Connection and retry settings for a GovernanceClient. Defaults are read
from environment variables; explicit arguments win. A process-wide default
config backs the module-level convenience functions; tests and
multi-tenant callers build their own ClientConfig instead.
"""

from __future__ import annotations

import os
from typing import Any, Callable

from pydantic import BaseModel, field_validator

DEFAULT_BASE_URL = "http://127.0.0.1:8000"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BACKOFF = 0.5

RequestStartHook = Callable[[str, str], None]
RequestEndHook = Callable[[str, str, int, float], None]
ErrorHook = Callable[[Exception], None]


class ClientConfig(BaseModel):
    base_url: str = DEFAULT_BASE_URL
    token: str | None = None
    timeout: float = DEFAULT_TIMEOUT_SECONDS         # seconds, per request
    max_retries: int = DEFAULT_MAX_RETRIES           # additional attempts
    retry_backoff_factor: float = DEFAULT_RETRY_BACKOFF

    # Observer hooks. Exceptions raised inside them are logged and ignored.
    on_request_start: RequestStartHook | None = None   # (method, url)
    on_request_end: RequestEndHook | None = None       # (method, url, status, ms)
    on_error: ErrorHook | None = None                  # (exc)

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("max_retries")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("max_retries must be >= 0")
        return value

    @classmethod
    def from_env(cls, **overrides: Any) -> "ClientConfig":
        """Build a config from GOVERNANCE_* env vars, overridden by kwargs.

        Overrides whose value is None are ignored.
        """
        values: dict[str, Any] = {
            "base_url": (
                os.environ.get("GOVERNANCE_BASE_URL")
                or os.environ.get("GOVERNANCE_GATEWAY_URL")
                or DEFAULT_BASE_URL
            ),
            "token": (
                os.environ.get("GOVERNANCE_TOKEN")
                or os.environ.get("GOVERNANCE_API_KEY")
                or None
            ),
            "timeout": float(
                os.environ.get("GOVERNANCE_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS))
            ),
            "max_retries": int(
                os.environ.get("GOVERNANCE_RETRIES", str(DEFAULT_MAX_RETRIES))
            ),
            "retry_backoff_factor": float(
                os.environ.get("GOVERNANCE_RETRY_BACKOFF", str(DEFAULT_RETRY_BACKOFF))
            ),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def auth_headers(self) -> dict[str, str]:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}


# ---------------------------------------------------------------------------
# Process-wide default
# ---------------------------------------------------------------------------

_default_config: ClientConfig | None = None


def configure(**options: Any) -> ClientConfig:
    """Replace the process-wide default config (last write wins).

    Observer hooks not passed here are carried over from the previous
    default so instrumentation survives reconfiguration.
    """
    global _default_config
    previous = _default_config
    if previous is not None:
        for hook in ("on_request_start", "on_request_end", "on_error"):
            if options.get(hook) is None:
                options[hook] = getattr(previous, hook)
    config = ClientConfig.from_env(**options)
    _default_config = config
    return config


def get_config() -> ClientConfig:
    """Return the default config, building it from the environment on first use."""
    global _default_config
    if _default_config is None:
        _default_config = ClientConfig.from_env()
    return _default_config


def reset_config() -> None:
    """Drop the default config (useful in tests or after env changes)."""
    global _default_config
    _default_config = None
