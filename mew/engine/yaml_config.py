"""YAML configuration loader.

Loads a single YAML file layered over the MEW_* environment defaults.
When no YAML is provided, EngineConfig.from_env() works exactly as
before.

Example YAML:
    engine:
      command: qwen
      transport: pipe          # or: terminal
      stderr_tail_lines: 10

    credentials:
      openai_api_key: ${OPENAI_API_KEY}
      openai_base_url: https://dashscope.aliyuncs.com/compatible-mode/v1
      openai_model: qwen3-coder-plus

    session:
      working_directory: ~/projects/demo
      approval_mode: auto-edit

    decoder:
      partial_pointers: [/delta/text, /content_block/text, /text]
      sticky_partial: true
"""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .config import (
    CredentialConfig,
    EngineConfig,
    SessionConfig,
    sanitize_credentials,
    sanitize_session,
)
from .decoder import DecoderPolicy

logger = logging.getLogger(__name__)

_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


@dataclass
class BridgeConfig:
    """Complete parsed configuration."""
    engine: EngineConfig
    credentials: CredentialConfig | None = None
    session: SessionConfig | None = None
    decoder: DecoderPolicy = field(default_factory=DecoderPolicy)


def _expand_env(value: Any) -> Any:
    """Replace ${VAR} references in strings; unset vars become ''."""
    if isinstance(value, str):
        return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env(v) for v in value]
    return value


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"'{name}' section must be a mapping, got {type(value).__name__}")
    return value


def _build_engine(engine_raw: dict[str, Any], base: EngineConfig) -> EngineConfig:
    known = {f.name for f in fields(EngineConfig)}
    unknown = sorted(set(engine_raw) - known)
    if unknown:
        logger.warning("Ignoring unknown engine settings: %s", ", ".join(unknown))
    values = {f.name: getattr(base, f.name) for f in fields(EngineConfig)}
    for key, value in engine_raw.items():
        if key not in known:
            continue
        default = values[key]
        values[key] = type(default)(value) if default is not None else value
    engine = EngineConfig(**values)
    engine.validate()
    return engine


def load_yaml_config(
    path: str | Path,
    base: EngineConfig | None = None,
) -> BridgeConfig:
    """Load and parse a YAML config file.

    Settings in the file override *base* (EngineConfig.from_env() when
    omitted). ``${VAR}`` references are expanded from the environment and
    the working directory has ``~`` expanded.
    """
    path = Path(path)
    logger.info(
        "load_yaml_config: attempting to load config from %s (exists=%s)",
        path, path.exists(),
    )
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(
            "load_yaml_config: config file not found at %s (absolute path: %s)",
            path, path.absolute(),
        )
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise

    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    raw = _expand_env(raw)

    top_sections = sorted(raw.keys())
    logger.info(
        "Parsed YAML config %s — sections: %s",
        path.name, ", ".join(top_sections) if top_sections else "(empty)",
    )

    engine = _build_engine(
        _section(raw, "engine"), base or EngineConfig.from_env(),
    )

    session_raw = dict(_section(raw, "session"))
    if session_raw.get("working_directory"):
        session_raw["working_directory"] = os.path.expanduser(
            str(session_raw["working_directory"])
        )

    return BridgeConfig(
        engine=engine,
        credentials=sanitize_credentials(_section(raw, "credentials")),
        session=sanitize_session(session_raw),
        decoder=DecoderPolicy.from_dict(_section(raw, "decoder")),
    )


def discover_config_path(cwd: Path | None = None) -> Path | None:
    """Find .mew/mew.yaml or mew.yaml under *cwd*."""
    cwd = cwd or Path.cwd()
    for candidate in (cwd / ".mew" / "mew.yaml", cwd / "mew.yaml"):
        if candidate.is_file():
            return candidate
    return None
