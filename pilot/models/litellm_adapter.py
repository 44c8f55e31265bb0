"""LiteLLM-backed chat provider: Vertex AI Llama, OpenAI, Anthropic, OpenRouter, local models, etc."""

from __future__ import annotations

import logging
from typing import Any, Callable

import litellm

from ..storage.base import BaseSessionStore
from .adapter import ModelSettings, ProviderError, ProviderTimeoutError
from .credentials import CredentialSource
from .session_provider import Completion, SessionChatProvider

logger = logging.getLogger(__name__)

# Suppress litellm's noisy logging
litellm.suppress_debug_info = True


def _get_field(obj: Any, key: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def _extract_usage(response: Any) -> dict[str, int]:
    """Extract token usage, including reasoning/cached tokens when present."""
    usage_obj = _get_field(response, "usage")
    if not usage_obj:
        return {}

    usage: dict[str, int] = {}
    for name in ("prompt_tokens", "completion_tokens", "total_tokens"):
        value = _get_field(usage_obj, name)
        if isinstance(value, (int, float)):
            usage[name] = int(value)

    completion_details = _get_field(usage_obj, "completion_tokens_details")
    if completion_details:
        value = _get_field(completion_details, "reasoning_tokens")
        if isinstance(value, (int, float)):
            usage["reasoning_tokens"] = int(value)

    prompt_details = _get_field(usage_obj, "prompt_tokens_details")
    if prompt_details:
        value = _get_field(prompt_details, "cached_tokens")
        if isinstance(value, (int, float)):
            usage["cached_tokens"] = int(value)

    return usage


def is_transient_error(exc: Exception) -> bool:
    """Classify a remote failure as worth retrying on a later turn."""
    message = str(exc).lower()

    non_retry_tokens = (
        "invalid api key",
        "authentication",
        "unauthorized",
        "forbidden",
        "bad request",
        "invalid request",
    )
    if any(token in message for token in non_retry_tokens):
        return False

    retry_tokens = (
        "connection error",
        "name resolution",
        "timeout",
        "timed out",
        "temporarily unavailable",
        "rate limit",
        "too many requests",
        "429",
        "500",
        "502",
        "503",
        "504",
        "internal server error",
    )
    if any(token in message for token in retry_tokens):
        return True

    retryable_types = tuple(
        t
        for t in (
            getattr(litellm, "APIConnectionError", None),
            getattr(litellm, "RateLimitError", None),
            getattr(litellm, "InternalServerError", None),
            getattr(litellm, "ServiceUnavailableError", None),
            getattr(litellm, "Timeout", None),
        )
        if t is not None
    )
    return isinstance(exc, retryable_types) if retryable_types else False


def _is_timeout(exc: Exception) -> bool:
    timeout_type = getattr(litellm, "Timeout", None)
    if timeout_type is not None and isinstance(exc, timeout_type):
        return True
    return isinstance(exc, TimeoutError)


class LiteLLMProvider(SessionChatProvider):
    """Chat provider that replays session history through `litellm.completion`.

    Exactly one completion request is made per provider call; failures are
    raised as ProviderError and never retried here.
    """

    def __init__(
        self,
        settings: ModelSettings,
        store: BaseSessionStore,
        default_system_prompt: Callable[[], str],
        *,
        credentials: CredentialSource | None = None,
        api_base: str | None = None,
        extra_headers: dict[str, str] | None = None,
        **kwargs: Any,
    ):
        super().__init__(store, default_system_prompt, **kwargs)
        self.settings = settings
        self.credentials = credentials
        self.api_base = api_base
        self.extra_headers = extra_headers or {}

    def _request_kwargs(
        self,
        system_prompt: str,
        messages: list[dict[str, str]],
        timeout: float | None = None,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.settings.model,
            "messages": [{"role": "system", "content": system_prompt}, *messages],
            "temperature": self.settings.temperature,
            "max_tokens": self.settings.max_tokens,
        }
        limits = [float(t) for t in (self.settings.timeout_s, timeout) if t is not None]
        if limits:
            # LiteLLM uses `timeout` (seconds) for request timeout.
            kwargs["timeout"] = min(limits)

        api_key = self.credentials.api_key() if self.credentials is not None else None
        if api_key:
            kwargs["api_key"] = api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self.extra_headers:
            kwargs["extra_headers"] = self.extra_headers
        return kwargs

    def _complete(
        self,
        system_prompt: str,
        messages: list[dict[str, str]],
        timeout: float | None = None,
    ) -> Completion:
        kwargs = self._request_kwargs(system_prompt, messages, timeout)
        try:
            response = litellm.completion(**kwargs)
        except Exception as exc:
            if _is_timeout(exc):
                logger.warning("Model call to %s timed out: %s", self.settings.model, exc)
                raise ProviderTimeoutError(f"Model call timed out: {exc}") from exc
            transient = is_transient_error(exc)
            logger.error("Model call to %s failed (transient=%s): %s", self.settings.model, transient, exc)
            raise ProviderError(f"Model call failed: {exc}", transient=transient) from exc

        usage = _extract_usage(response)
        choices = _get_field(response, "choices") or []
        if not choices:
            return Completion(text="", finish_reason="no_choices", usage=usage)

        choice = choices[0]
        message = _get_field(choice, "message")
        content = _get_field(message, "content") if message is not None else None
        return Completion(
            text=content if isinstance(content, str) else "",
            finish_reason=_get_field(choice, "finish_reason") or "stop",
            usage=usage,
        )
