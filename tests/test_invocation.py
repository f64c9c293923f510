"""Tests for assistant command-line and environment construction."""
from __future__ import annotations

from mew.engine.config import CredentialConfig, SessionConfig
from mew.engine.transports.invocation import (
    base_argv,
    build_env,
    build_headless_invocation,
    build_interactive_invocation,
)


def test_headless_invocation_streams_json() -> None:
    inv = build_headless_invocation(
        "qwen", "hello", False, windows=False, base_env={"TERM": "dumb"},
    )
    assert inv.argv == [
        "qwen", "-p", "hello",
        "--output-format", "stream-json",
        "--include-partial-messages",
    ]
    assert inv.cwd is None


def test_headless_invocation_with_continue_and_session() -> None:
    session = SessionConfig(working_directory="/srv/app", approval_mode="yolo")
    inv = build_headless_invocation(
        "qwen", "next", True, None, session, windows=False, base_env={},
    )
    assert "--continue" in inv.argv
    assert inv.argv[-4:] == [
        "--include-directories", "/srv/app", "--approval-mode", "yolo",
    ]
    assert inv.cwd == "/srv/app"


def test_windows_launch_goes_through_cmd() -> None:
    assert base_argv("qwen", windows=True) == ["cmd.exe", "/C", "qwen.cmd"]
    assert base_argv("qwen", windows=False) == ["qwen"]


def test_env_strips_ci_and_defaults_term() -> None:
    env = build_env(None, {
        "CI": "true",
        "CONTINUOUS_INTEGRATION": "1",
        "CI_JOB_ID": "9",
        "CIRCLE": "keep",
        "PATH": "/bin",
    })
    assert env == {"CIRCLE": "keep", "PATH": "/bin", "TERM": "xterm-256color"}


def test_env_keeps_existing_term_and_applies_credentials() -> None:
    creds = CredentialConfig(openai_api_key="sk-1", openai_model="qwen3")
    env = build_env(creds, {"TERM": "screen", "OPENAI_BASE_URL": "http://x"})
    assert env["TERM"] == "screen"
    assert env["OPENAI_API_KEY"] == "sk-1"
    assert env["OPENAI_MODEL"] == "qwen3"
    assert env["OPENAI_BASE_URL"] == "http://x"


def test_interactive_invocation_has_no_prompt_flags() -> None:
    inv = build_interactive_invocation(
        "qwen", None, SessionConfig(approval_mode="plan"), base_env={},
    )
    assert inv.argv == ["qwen", "--approval-mode", "plan"]
    assert "-p" not in inv.argv
