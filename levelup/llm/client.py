"""OpenRouter chat-completions client for LevelUp's advisory oracles.

httpx against the OpenAI-compatible endpoint, with bounded timeouts, a small
retry budget and JSON-object responses. The client never decides anything
about game state; the judge and quest generator validate whatever it returns.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from levelup.core.config import LLMConfig
from levelup.core.exceptions import (
    AuthenticationError,
    LLMError,
    ModelNotFoundError,
    RateLimitError,
)
from levelup.llm.response_parser import parse_json_object

logger = logging.getLogger("levelup.llm")

MAX_BACKOFF_SECONDS = 30
JSON_OBJECT_FORMAT = {"type": "json_object"}


@dataclass
class LLMMessage:
    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class LLMResponse:
    content: str
    model: str
    tokens_used: int = 0
    raw: dict = field(default_factory=dict)


class _Retryable(Exception):
    """One attempt failed in a way another attempt might fix."""

    def __init__(self, error: Exception):
        super().__init__(str(error))
        self.error = error


class OpenRouterClient:
    """Synchronous client for OpenRouter's OpenAI-compatible API.

    Model chains come from the ModelRouter; the client only adds the
    ``llm.fallback_models`` configured globally.
    """

    def __init__(self, config: Optional[LLMConfig] = None, api_key: Optional[str] = None):
        self.config = config or LLMConfig()
        self.api_key = api_key or os.getenv("OPENROUTER_API_KEY", "")
        self.base_url = self.config.base_url.rstrip("/")
        self._client: Optional[httpx.Client] = None

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=httpx.Timeout(self.config.timeout_seconds))
        return self._client

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "X-Title": "LevelUp",
        }

    # -------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------

    def complete(
        self,
        messages: list[LLMMessage],
        model: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        response_format: Optional[dict] = None,
    ) -> LLMResponse:
        """Run one chat completion against a single model, retrying transient failures.

        Raises:
            AuthenticationError: no key configured, or the key was rejected.
            ModelNotFoundError: the provider does not know ``model``.
            RateLimitError: every attempt was rate limited.
            LLMError: any other failure once retries are spent.
        """
        if not self.api_key:
            raise AuthenticationError("OPENROUTER_API_KEY not set")

        payload: dict[str, Any] = {
            "model": model,
            "messages": [m.to_dict() for m in messages],
            "temperature": self.config.default_temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self.config.default_max_tokens,
        }
        if response_format:
            payload["response_format"] = response_format
        return self._request_with_retry(payload, timeout_seconds)

    def complete_with_fallback(
        self,
        messages: list[LLMMessage],
        models: list[str],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        response_format: Optional[dict] = None,
    ) -> LLMResponse:
        """Walk the model chain until one model answers. A rejected key stops the walk."""
        chain = list(dict.fromkeys(m for m in [*models, *self.config.fallback_models] if m))
        if not chain:
            raise LLMError("No models provided for completion")

        failures: list[str] = []
        for model in chain:
            try:
                return self.complete(
                    messages, model,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    timeout_seconds=timeout_seconds,
                    response_format=response_format,
                )
            except AuthenticationError:
                raise
            except LLMError as e:
                failures.append(f"{model}: {e}")
                logger.warning("Model '%s' failed (%s), trying next in chain", model, e)

        raise LLMError("All models failed.\n" + "\n".join(failures))

    def complete_json(
        self,
        messages: list[LLMMessage],
        models: list[str],
        temperature: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
    ) -> dict[str, Any]:
        """Completion constrained to a JSON object; returns the parsed object."""
        response = self.complete_with_fallback(
            messages,
            models,
            temperature=temperature,
            timeout_seconds=timeout_seconds,
            response_format=JSON_OBJECT_FORMAT,
        )
        return parse_json_object(response.content)

    def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None

    # -------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------

    def _request_with_retry(self, payload: dict, timeout_seconds: Optional[float]) -> LLMResponse:
        attempts = self.config.provider_retries + 1
        last_error: Optional[Exception] = None

        for attempt in range(attempts):
            try:
                return self._attempt(payload, timeout_seconds)
            except _Retryable as retry:
                last_error = retry.error
                if attempt < attempts - 1:
                    delay = _backoff_delay(attempt, self.config.provider_backoff_seconds)
                    logger.warning("%s; retry %d/%d in %.1fs",
                                   retry.error, attempt + 1, attempts - 1, delay)
                    time.sleep(delay)

        if isinstance(last_error, RateLimitError):
            raise last_error
        raise LLMError(f"Request failed after {attempts} attempts: {last_error}")

    def _attempt(self, payload: dict, timeout_seconds: Optional[float]) -> LLMResponse:
        kwargs: dict[str, Any] = {"json": payload, "headers": self._headers()}
        if timeout_seconds:
            kwargs["timeout"] = httpx.Timeout(timeout_seconds)
        try:
            resp = self.client.post(f"{self.base_url}/chat/completions", **kwargs)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise _Retryable(LLMError(f"Network error: {e}")) from e

        model = payload.get("model", "unknown")
        if resp.status_code == 401:
            raise AuthenticationError("Invalid API key")
        if resp.status_code == 404:
            raise ModelNotFoundError(f"Model not found: {model}")
        if resp.status_code == 429:
            raise _Retryable(RateLimitError("Rate limited by provider"))
        if resp.status_code >= 500:
            raise _Retryable(LLMError(f"Server error {resp.status_code}"))
        if resp.status_code >= 400:
            raise LLMError(f"Request rejected with status {resp.status_code}")

        try:
            data = resp.json()
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise LLMError(f"Malformed completion body: {e}") from e
        if not content:
            raise LLMError("Empty completion content")

        tokens = (data.get("usage") or {}).get("total_tokens", 0)
        logger.debug("Completion from %s (%d tokens)", data.get("model", model), tokens)
        return LLMResponse(content=content, model=data.get("model", model), tokens_used=tokens, raw=data)


def _backoff_delay(attempt: int, base_seconds: float = 1.0) -> float:
    """Exponential backoff: base, 2x base, 4x base, ... capped."""
    return min(base_seconds * (2 ** attempt), MAX_BACKOFF_SECONDS)
