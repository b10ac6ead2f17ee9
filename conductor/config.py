"""Configuration management for the orchestrator."""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Any, Optional

from conductor.core.models import DEFAULT_PRIORITY


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Config:
    """Application configuration loaded from ``CONDUCTOR_*`` environment variables."""

    provider: str = "memory"
    session_name: str = "conductor"
    shell: str = "/bin/sh"
    log_level: str = "INFO"
    log_file: Optional[str] = None
    json_logs: bool = False
    dead_letter_limit: int = 100
    default_priority: int = DEFAULT_PRIORITY
    host: str = "127.0.0.1"
    port: int = 8000

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables."""
        return cls(
            provider=os.getenv("CONDUCTOR_PROVIDER", "memory"),
            session_name=os.getenv("CONDUCTOR_SESSION", "conductor"),
            shell=os.getenv("CONDUCTOR_SHELL", "/bin/sh"),
            log_level=os.getenv("CONDUCTOR_LOG_LEVEL", "INFO"),
            log_file=os.getenv("CONDUCTOR_LOG_FILE") or None,
            json_logs=_flag(os.getenv("CONDUCTOR_JSON_LOGS")),
            dead_letter_limit=int(os.getenv("CONDUCTOR_DEAD_LETTER_LIMIT", "100")),
            default_priority=int(os.getenv("CONDUCTOR_DEFAULT_PRIORITY", str(DEFAULT_PRIORITY))),
            host=os.getenv("CONDUCTOR_HOST", "127.0.0.1"),
            port=int(os.getenv("CONDUCTOR_PORT", "8000")),
        )

    def override(self, **changes: Any) -> Config:
        """Copy with every non-None keyword applied, for CLI options."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})
