"""Provider + credential resolution shared by the CLI and the HTTP server."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable

from ..config import ModelConfig, OrchestratorConfig, PluginConfig
from ..plugins import build_from_spec
from ..storage.base import BaseSessionStore
from .adapter import ChatProvider, ModelSettings
from .credentials import CredentialSource, EnvCredentials, StaticCredentials
from .litellm_adapter import LiteLLMProvider


@dataclass(frozen=True)
class ResolveResult:
    provider: ChatProvider
    resolved_model: str
    provider_note: str | None = None  # e.g. "openrouter" | "vertex_ai" | "plugin"


@dataclass(frozen=True)
class _CredentialChoice:
    credentials: CredentialSource | None
    resolved_model: str
    api_base: str | None
    extra_headers: dict[str, str]
    provider_note: str | None


def _openrouter_headers() -> dict[str, str]:
    headers: dict[str, str] = {}
    if os.getenv("OPENROUTER_SITE_URL"):
        headers["HTTP-Referer"] = os.getenv("OPENROUTER_SITE_URL", "")
    if os.getenv("OPENROUTER_APP_NAME"):
        headers["X-Title"] = os.getenv("OPENROUTER_APP_NAME", "")
    return headers


def _openrouter_choice(model: str, credentials: CredentialSource, api_base: str | None) -> _CredentialChoice:
    return _CredentialChoice(
        credentials=credentials,
        resolved_model=model if model.startswith("openrouter/") else f"openrouter/{model}",
        api_base=api_base or "https://openrouter.ai/api/v1",
        extra_headers=_openrouter_headers(),
        provider_note="openrouter",
    )


def _choose_credentials(model: str, api_key: str | None, api_base: str | None) -> _CredentialChoice:
    model_lower = model.lower()
    openrouter_hint = model_lower.startswith("openrouter/") or model_lower.endswith(":free")

    if api_key:
        if openrouter_hint:
            return _openrouter_choice(model, StaticCredentials(api_key), api_base)
        return _CredentialChoice(StaticCredentials(api_key), model, api_base, {}, None)

    # Vertex AI authenticates through application default credentials.
    if model_lower.startswith("vertex_ai/"):
        return _CredentialChoice(None, model, api_base, {}, "vertex_ai")

    if os.getenv("OPENROUTER_API_KEY") and (openrouter_hint or not (os.getenv("OPENAI_API_KEY") or os.getenv("ANTHROPIC_API_KEY"))):
        return _openrouter_choice(model, EnvCredentials("OPENROUTER_API_KEY"), api_base)
    if os.getenv("OPENAI_API_KEY"):
        return _CredentialChoice(EnvCredentials("OPENAI_API_KEY"), model, api_base, {}, "openai")
    if os.getenv("ANTHROPIC_API_KEY"):
        return _CredentialChoice(EnvCredentials("ANTHROPIC_API_KEY"), model, api_base, {}, "anthropic")
    raise ValueError(
        "No API key found. Set one in .env (e.g., OPENROUTER_API_KEY, OPENAI_API_KEY) "
        "or use a vertex_ai/ model with application default credentials."
    )


def resolve_provider(
    *,
    model_config: ModelConfig,
    orchestrator_config: OrchestratorConfig,
    plugin_config: PluginConfig,
    store: BaseSessionStore,
    default_system_prompt: Callable[[], str],
    api_key: str | None = None,
) -> ResolveResult:
    """
    Resolve credentials and return a configured chat provider.

    This function does not print or exit; callers should handle errors.
    """
    if plugin_config.provider:
        provider = build_from_spec(
            plugin_config.provider,
            required_method="continue_with_tool_results",
            model_config=model_config,
            store=store,
            default_system_prompt=default_system_prompt,
        )
        return ResolveResult(provider=provider, resolved_model=model_config.model, provider_note="plugin")

    if plugin_config.credentials:
        credentials = build_from_spec(plugin_config.credentials, required_method="api_key", model_config=model_config)
        choice = _CredentialChoice(credentials, model_config.model, model_config.api_base, {}, "plugin")
    else:
        choice = _choose_credentials(model_config.model, api_key, model_config.api_base)

    settings = ModelSettings(
        model=choice.resolved_model,
        temperature=model_config.temperature,
        max_tokens=model_config.max_tokens,
        timeout_s=orchestrator_config.request_timeout_seconds,
    )
    provider = LiteLLMProvider(
        settings,
        store,
        default_system_prompt,
        credentials=choice.credentials,
        api_base=choice.api_base,
        extra_headers=choice.extra_headers,
    )
    return ResolveResult(provider=provider, resolved_model=choice.resolved_model, provider_note=choice.provider_note)
