"""Configuration helpers for environment-backed runtime settings."""

from __future__ import annotations

from dataclasses import dataclass
import os


def _get_env(name: str) -> str | None:
    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip()
    return value or None


def _get_int_env(name: str, default: int, *, minimum: int = 1) -> int:
    raw = _get_env(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as err:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from err
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _get_float_env(name: str, default: float) -> float:
    raw = _get_env(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError as err:
        raise ValueError(f"{name} must be a number, got {raw!r}") from err
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


@dataclass(frozen=True)
class OrchestratorConfig:
    """Bounds applied to conversations and tool rounds."""

    max_tool_rounds: int = 5
    session_idle_seconds: float = 1800.0
    max_sessions: int = 1000
    request_timeout_seconds: float = 60.0
    max_workers: int = 8


@dataclass(frozen=True)
class ModelConfig:
    """Remote model endpoint settings."""

    model: str = "vertex_ai/meta/llama-3.1-70b-instruct-maas"
    temperature: float = 0.7
    max_tokens: int = 4096
    api_base: str | None = None
    timezone: str = "Asia/Riyadh"
    catalog_path: str | None = None


@dataclass(frozen=True)
class PluginConfig:
    """Optional `module:function` overrides for pluggable collaborators."""

    provider: str | None = None
    credentials: str | None = None
    tool_executor: str | None = None


def load_orchestrator_config() -> OrchestratorConfig:
    """Load orchestration bounds from environment variables."""

    defaults = OrchestratorConfig()
    return OrchestratorConfig(
        max_tool_rounds=_get_int_env("PILOT_MAX_TOOL_ROUNDS", defaults.max_tool_rounds, minimum=0),
        session_idle_seconds=_get_float_env("PILOT_SESSION_IDLE_SECONDS", defaults.session_idle_seconds),
        max_sessions=_get_int_env("PILOT_MAX_SESSIONS", defaults.max_sessions),
        request_timeout_seconds=_get_float_env("PILOT_REQUEST_TIMEOUT_SECONDS", defaults.request_timeout_seconds),
        max_workers=_get_int_env("PILOT_MAX_WORKERS", defaults.max_workers),
    )


def load_model_config() -> ModelConfig:
    """Load model endpoint settings from environment variables."""

    defaults = ModelConfig()
    temperature_raw = _get_env("PILOT_TEMPERATURE")
    try:
        temperature = float(temperature_raw) if temperature_raw is not None else defaults.temperature
    except ValueError as err:
        raise ValueError(f"PILOT_TEMPERATURE must be a number, got {temperature_raw!r}") from err

    return ModelConfig(
        model=_get_env("PILOT_MODEL") or defaults.model,
        temperature=temperature,
        max_tokens=_get_int_env("PILOT_MAX_TOKENS", defaults.max_tokens),
        api_base=_get_env("LLM_BASE_URL"),
        timezone=_get_env("PILOT_TIMEZONE") or defaults.timezone,
        catalog_path=_get_env("PILOT_CATALOG_PATH"),
    )


def load_plugin_config() -> PluginConfig:
    """Load plugin specs from environment variables."""

    return PluginConfig(
        provider=_get_env("PILOT_PROVIDER_PLUGIN"),
        credentials=_get_env("PILOT_CREDENTIALS_PLUGIN"),
        tool_executor=_get_env("PILOT_TOOL_EXECUTOR_PLUGIN"),
    )
