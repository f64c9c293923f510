"""Command-line and environment construction for the assistant CLI."""
from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass

from ..config import CredentialConfig, SessionConfig

logger = logging.getLogger(__name__)

DEFAULT_TERM = "xterm-256color"


@dataclass
class Invocation:
    """A fully prepared process launch."""
    argv: list[str]
    env: dict[str, str]
    cwd: str | None = None


def _is_ci_key(key: str) -> bool:
    return key in ("CI", "CONTINUOUS_INTEGRATION") or key.startswith("CI_")


def build_env(
    credentials: CredentialConfig | None,
    base_env: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Build the child environment.

    CI markers are removed so the assistant does not fall back to its
    non-interactive CI behaviour, TERM is defaulted, and credential
    overrides are applied. Only override names are logged.
    """
    env = dict(os.environ if base_env is None else base_env)

    ci_keys = [key for key in env if _is_ci_key(key)]
    for key in ci_keys:
        del env[key]
    if ci_keys:
        logger.info("Removed %d CI-related env vars for assistant process", len(ci_keys))

    if "TERM" not in env:
        env["TERM"] = DEFAULT_TERM
        logger.info("TERM was missing; set TERM=%s for assistant process", DEFAULT_TERM)

    if credentials is not None:
        applied: list[str] = []
        for key, value in (
            ("OPENAI_API_KEY", credentials.openai_api_key),
            ("OPENAI_BASE_URL", credentials.openai_base_url),
            ("OPENAI_MODEL", credentials.openai_model),
        ):
            if value is not None:
                env[key] = value
                applied.append(key)
        if applied:
            logger.info(
                "Applied OpenAI-compatible env overrides: %s", ", ".join(applied),
            )

    return env


def session_args(session: SessionConfig | None) -> list[str]:
    """CLI flags derived from the session-relevant config."""
    if session is None:
        return []
    args: list[str] = []
    if session.working_directory:
        args.extend(["--include-directories", session.working_directory])
        logger.info("Applied working directory: %s", session.working_directory)
    if session.approval_mode:
        args.extend(["--approval-mode", session.approval_mode])
        logger.info("Applied approval mode: %s", session.approval_mode)
    return args


def base_argv(command: str, *, windows: bool | None = None) -> list[str]:
    """Launcher prefix; npm shims on Windows need cmd.exe."""
    if windows is None:
        windows = sys.platform == "win32"
    if windows:
        return ["cmd.exe", "/C", f"{command}.cmd"]
    return [command]


def build_headless_invocation(
    command: str,
    prompt: str,
    use_continue: bool,
    credentials: CredentialConfig | None = None,
    session: SessionConfig | None = None,
    *,
    windows: bool | None = None,
    base_env: Mapping[str, str] | None = None,
) -> Invocation:
    """One-shot invocation streaming stream-json on stdout."""
    argv = base_argv(command, windows=windows)
    argv.extend([
        "-p", prompt,
        "--output-format", "stream-json",
        "--include-partial-messages",
    ])
    if use_continue:
        argv.append("--continue")
    argv.extend(session_args(session))
    return Invocation(
        argv=argv,
        env=build_env(credentials, base_env),
        cwd=session.working_directory if session else None,
    )


def build_interactive_invocation(
    command: str,
    credentials: CredentialConfig | None = None,
    session: SessionConfig | None = None,
    *,
    base_env: Mapping[str, str] | None = None,
) -> Invocation:
    """Long-lived interactive invocation for a pseudo-terminal."""
    argv = [command]
    argv.extend(session_args(session))
    return Invocation(
        argv=argv,
        env=build_env(credentials, base_env),
        cwd=session.working_directory if session else None,
    )
