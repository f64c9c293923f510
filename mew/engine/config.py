"""Configuration for the session bridge.

Engine settings are loaded from MEW_* environment variables and have
sensible defaults. Per-round overrides (credentials, working directory,
approval mode) arrive from the UI and are sanitized here before they
reach a transport or the continuity decision.
"""
from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, fields
from typing import Any

from .models import ApprovalMode

logger = logging.getLogger(__name__)


# Async sink for UI events.
# Signature: async def callback(event: dict[str, Any]) -> None
# Receives dicts like {"event": "stream_chunk", "round_id": 3, "chunk": "..."}
EventCallback = Callable[[dict[str, Any]], Awaitable[None]]


async def fire_event(
    callback: EventCallback | None,
    event: dict[str, Any],
) -> None:
    """Fire an event callback if set. Sink errors never break a round."""
    if callback is None:
        return
    try:
        await callback(event)
    except Exception:
        logger.debug(
            "Event callback failed for %s", event.get("event"), exc_info=True,
        )


TRANSPORT_NAMES = ("pipe", "terminal")


@dataclass
class EngineConfig:
    """Bridge configuration."""

    # Assistant binary. On Windows the pipe transport runs "<command>.cmd"
    # through cmd.exe.
    command: str = "qwen"
    # "pipe": one process per round. "terminal": one persistent pty process.
    transport: str = "pipe"

    # Number of trailing stderr lines included in round error messages.
    stderr_tail_lines: int = 10

    # Poll interval for the persistent terminal reader (seconds).
    terminal_read_timeout: float = 0.2
    terminal_cols: int = 120
    terminal_rows: int = 40

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load configuration from MEW_* environment variables."""
        mew_vars = sorted(k for k in os.environ if k.startswith("MEW_"))
        if mew_vars:
            logger.info(
                "EngineConfig.from_env: MEW_* env overrides: %s",
                ", ".join(mew_vars),
            )
        else:
            logger.debug("EngineConfig.from_env: no MEW_* env vars set, using defaults")

        config = cls(
            command=os.getenv("MEW_COMMAND", cls.command),
            transport=os.getenv("MEW_TRANSPORT", cls.transport),
            stderr_tail_lines=int(os.getenv(
                "MEW_STDERR_TAIL_LINES", str(cls.stderr_tail_lines)
            )),
            terminal_read_timeout=float(os.getenv(
                "MEW_TERMINAL_READ_TIMEOUT", str(cls.terminal_read_timeout)
            )),
            terminal_cols=int(os.getenv(
                "MEW_TERMINAL_COLS", str(cls.terminal_cols)
            )),
            terminal_rows=int(os.getenv(
                "MEW_TERMINAL_ROWS", str(cls.terminal_rows)
            )),
            log_level=os.getenv("MEW_LOG_LEVEL", cls.log_level),
        )
        config.validate()
        logger.info(
            "EngineConfig.from_env: command=%s transport=%s log_level=%s",
            config.command, config.transport, config.log_level,
        )
        return config

    def validate(self) -> None:
        """Raise ValueError for settings no transport can honour."""
        if self.transport not in TRANSPORT_NAMES:
            raise ValueError(
                f"Unknown transport '{self.transport}'. "
                f"Expected one of: {', '.join(TRANSPORT_NAMES)}"
            )
        if not self.command.strip():
            raise ValueError("command must not be empty")
        if self.stderr_tail_lines < 0:
            raise ValueError("stderr_tail_lines must be >= 0")


# ── per-round overrides ──────────────────────────────────────────────


@dataclass(frozen=True)
class CredentialConfig:
    """OpenAI-compatible endpoint overrides passed through the environment."""
    openai_api_key: str | None = None
    openai_base_url: str | None = None
    openai_model: str | None = None

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def __repr__(self) -> str:
        # Never render the key itself.
        key = "set" if self.openai_api_key else None
        return (
            f"CredentialConfig(openai_api_key={key!r}, "
            f"openai_base_url={self.openai_base_url!r}, "
            f"openai_model={self.openai_model!r})"
        )


@dataclass(frozen=True)
class SessionConfig:
    """Session-relevant overrides. Equality of this subset alone decides
    whether a round continues the previous conversation."""
    working_directory: str | None = None
    approval_mode: str | None = None

    def is_empty(self) -> bool:
        return self.working_directory is None and self.approval_mode is None


@dataclass(frozen=True)
class ConfigSnapshot:
    """Sanitized overrides for a single round."""
    credentials: CredentialConfig | None = None
    session: SessionConfig | None = None


def sanitize_optional_value(value: Any) -> str | None:
    """Trim whitespace and map empty strings to None."""
    if value is None:
        return None
    trimmed = str(value).strip()
    return trimmed or None


def sanitize_approval_mode(mode: Any) -> str | None:
    """Return a recognized approval mode, or None with a warning."""
    trimmed = sanitize_optional_value(mode)
    if trimmed is None:
        return None
    try:
        return ApprovalMode(trimmed).value
    except ValueError:
        logger.warning(
            "Ignored unsupported approval mode: %s (expected one of: %s)",
            trimmed, ", ".join(m.value for m in ApprovalMode),
        )
        return None


def sanitize_credentials(
    config: CredentialConfig | dict[str, Any] | None,
) -> CredentialConfig | None:
    if config is None:
        return None
    raw = config if isinstance(config, dict) else _as_dict(config)
    sanitized = CredentialConfig(
        openai_api_key=sanitize_optional_value(
            raw.get("openai_api_key", raw.get("openaiApiKey"))
        ),
        openai_base_url=sanitize_optional_value(
            raw.get("openai_base_url", raw.get("openaiBaseUrl"))
        ),
        openai_model=sanitize_optional_value(
            raw.get("openai_model", raw.get("openaiModel"))
        ),
    )
    return None if sanitized.is_empty() else sanitized


def sanitize_session(
    config: SessionConfig | dict[str, Any] | None,
) -> SessionConfig | None:
    if config is None:
        return None
    raw = config if isinstance(config, dict) else _as_dict(config)
    sanitized = SessionConfig(
        working_directory=sanitize_optional_value(
            raw.get("working_directory", raw.get("workingDirectory"))
        ),
        approval_mode=sanitize_approval_mode(
            raw.get("approval_mode", raw.get("approvalMode"))
        ),
    )
    return None if sanitized.is_empty() else sanitized


def sanitize_snapshot(
    credentials: CredentialConfig | dict[str, Any] | None = None,
    session: SessionConfig | dict[str, Any] | None = None,
) -> ConfigSnapshot:
    """Sanitize both halves of a caller-supplied config."""
    return ConfigSnapshot(
        credentials=sanitize_credentials(credentials),
        session=sanitize_session(session),
    )


def _as_dict(config: Any) -> dict[str, Any]:
    return {f.name: getattr(config, f.name) for f in fields(config)}
