"""
Token-stream settings: model endpoint, tool-round bound, reasoning display,
catalog failure policy, memory backend and log level.

Layers, later wins:
    defaults, YAML file, profile, TOKENSTREAM_* env vars, CLI flags
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class LLMConfig:
    name: str = "openai"
    model: str = "gpt-4o"
    api_base: str = "https://api.openai.com/v1"
    api_key_env: str = "OPENAI_API_KEY"
    timeout_seconds: int = 120
    max_retries: int = 2
    temperature: float | None = None


@dataclass
class StreamConfig:
    max_tool_rounds: int = 20
    reasoning_path: str = "$.reasoning_content"
    show_reasoning: bool = True

    @property
    def tool_round_limit(self) -> int | None:
        """``max_tool_rounds`` as the dispatcher expects it; ``None`` = unbounded."""
        return self.max_tool_rounds if self.max_tool_rounds > 0 else None


@dataclass
class McpConfig:
    fail_if_one_server_fails: bool = False


@dataclass
class MemoryConfig:
    backend: str = "memory"  # "memory" or "sqlite"
    sqlite_path: str = "~/.tokenstream/memory.db"


@dataclass
class LoggingConfig:
    level: str = "WARNING"


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class TokenStreamConfig:
    llm: LLMConfig = field(default_factory=LLMConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)
    mcp: McpConfig = field(default_factory=McpConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    profiles: dict[str, dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


_SECTIONS: dict[str, type] = {
    "llm": LLMConfig,
    "stream": StreamConfig,
    "mcp": McpConfig,
    "memory": MemoryConfig,
    "logging": LoggingConfig,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _apply_dotpath(obj: Any, dotpath: str, value: Any) -> None:
    """Walk obj via dotpath and set the final attribute."""
    parts = dotpath.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    setattr(obj, parts[-1], value)


def _deep_merge(base: dict, overlay: dict) -> dict:
    """Recursively merge overlay into base, returning a new dict."""
    merged = dict(base)
    for k, v in overlay.items():
        if k in merged and isinstance(merged[k], dict) and isinstance(v, dict):
            merged[k] = _deep_merge(merged[k], v)
        else:
            merged[k] = v
    return merged


def _coerce(value: str, target_type: type) -> Any:
    """Coerce a string env value to the target type."""
    if target_type is bool:
        return value.lower() in ("1", "true", "yes", "on")
    if target_type is int:
        return int(value)
    if target_type is float:
        return float(value)
    return value


def _build_section(cls: type, raw: dict) -> Any:
    """Build a dataclass section from a raw dict, ignoring unknown keys."""
    valid_fields = {f.name for f in fields(cls)}
    filtered = {k: v for k, v in (raw or {}).items() if k in valid_fields}
    return cls(**filtered)


# ---------------------------------------------------------------------------
# ENV var mapping
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "TOKENSTREAM_LLM_NAME":                 ("llm.name", str),
    "TOKENSTREAM_LLM_MODEL":                ("llm.model", str),
    "TOKENSTREAM_LLM_API_BASE":             ("llm.api_base", str),
    "TOKENSTREAM_LLM_API_KEY_ENV":          ("llm.api_key_env", str),
    "TOKENSTREAM_LLM_TIMEOUT_SECONDS":      ("llm.timeout_seconds", int),
    "TOKENSTREAM_LLM_MAX_RETRIES":          ("llm.max_retries", int),
    "TOKENSTREAM_LLM_TEMPERATURE":          ("llm.temperature", float),
    "TOKENSTREAM_STREAM_MAX_TOOL_ROUNDS":   ("stream.max_tool_rounds", int),
    "TOKENSTREAM_STREAM_REASONING_PATH":    ("stream.reasoning_path", str),
    "TOKENSTREAM_STREAM_SHOW_REASONING":    ("stream.show_reasoning", bool),
    "TOKENSTREAM_MCP_FAIL_IF_ONE_SERVER_FAILS": ("mcp.fail_if_one_server_fails", bool),
    "TOKENSTREAM_MEMORY_BACKEND":           ("memory.backend", str),
    "TOKENSTREAM_MEMORY_SQLITE_PATH":       ("memory.sqlite_path", str),
    "TOKENSTREAM_LOGGING_LEVEL":            ("logging.level", str),
}


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> TokenStreamConfig:
    """
    Build a TokenStreamConfig by layering sources in precedence order:

        defaults  <  config file  <  profile  <  env vars  <  CLI flags

    Parameters
    ----------
    config_path : path to YAML config file (optional)
    profile : name of a profile to apply from the config file
    cli_overrides : dict of dotpath -> value CLI flag overrides
    """
    raw: dict[str, Any] = {}

    # --- 1. Config file ---
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.is_file():
            with p.open("r", encoding="utf-8") as f:
                file_data = yaml.safe_load(f) or {}
            if not isinstance(file_data, dict):
                raise ValueError(f"Config file {p} must contain a mapping")
            raw = _deep_merge(raw, file_data)

    # --- 2. Profile overlay ---
    if profile:
        profile_data = raw.get("profiles", {}).get(profile)
        if profile_data is None:
            raise KeyError(f"Unknown profile {profile!r}")
        raw = _deep_merge(raw, profile_data)

    # --- Build sections from raw ---
    cfg = TokenStreamConfig(
        **{name: _build_section(cls, raw.get(name, {})) for name, cls in _SECTIONS.items()},
        profiles=raw.get("profiles", {}),
    )

    # --- 3. Env var overrides ---
    for env_var, (dotpath, target_type) in _ENV_MAP.items():
        val = os.environ.get(env_var)
        if val is not None:
            _apply_dotpath(cfg, dotpath, _coerce(val, target_type))

    # --- 4. CLI flag overrides ---
    if cli_overrides:
        for dotpath, value in cli_overrides.items():
            if value is not None:
                _apply_dotpath(cfg, dotpath, value)

    return cfg
