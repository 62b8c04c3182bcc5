"""Abstract advisory oracle for LevelUp.

An oracle takes a wire payload (plain dict) and returns the raw dict it
suggests. It never touches storage. Callers (Judge, QuestGenerator) decide
whether the suggestion is usable.
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

from levelup.core.exceptions import AuthenticationError, ExternalServiceError, LLMError
from levelup.llm.client import LLMMessage, OpenRouterClient
from levelup.llm.router import ModelRouter


class BaseOracle(ABC):
    """Base class for advisory oracles.

    Every call follows the same lifecycle:
    1. Receive the wire payload
    2. Ask the underlying service (``request()``)
    3. Return the raw suggestion, or raise ExternalServiceError
    4. Log timing and failures throughout

    Subclasses implement ``request()``; callers use ``ask()``.
    """

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(f"levelup.oracle.{name.lower()}")
        self._metrics: dict[str, Any] = {
            "total_calls": 0,
            "total_errors": 0,
            "last_duration_seconds": 0.0,
        }

    @abstractmethod
    def request(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Send the payload and return the service's JSON object."""

    def ask(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Call ``request()`` with timing, converting every failure to ExternalServiceError."""
        start = time.monotonic()
        self._metrics["total_calls"] += 1
        try:
            result = self.request(payload)
        except ExternalServiceError:
            self._record_error(start)
            raise
        except Exception as e:
            self._record_error(start)
            raise ExternalServiceError(f"{self.name} oracle failed: {e}") from e

        duration = time.monotonic() - start
        self._metrics["last_duration_seconds"] = duration
        self.logger.debug("%s oracle answered in %.2fs", self.name, duration)
        return result

    def _record_error(self, start: float) -> None:
        self._metrics["total_errors"] += 1
        self._metrics["last_duration_seconds"] = time.monotonic() - start

    def get_metrics(self) -> dict[str, Any]:
        return dict(self._metrics)


class LLMOracle(BaseOracle):
    """Oracle backed by an OpenRouter model chain and a system prompt."""

    def __init__(
        self,
        name: str,
        llm_client: OpenRouterClient,
        model_router: ModelRouter,
        role: str,
        system_prompt: str,
        temperature: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
    ):
        super().__init__(name)
        self.llm_client = llm_client
        self.model_router = model_router
        self.role = role
        self.system_prompt = system_prompt
        self.temperature = temperature
        self.timeout_seconds = timeout_seconds

    def request(self, payload: dict[str, Any]) -> dict[str, Any]:
        messages = [
            LLMMessage(role="system", content=self.system_prompt),
            LLMMessage(role="user", content=json.dumps(payload, default=str)),
        ]
        try:
            return self.llm_client.complete_json(
                messages,
                models=self.model_router.chain(self.role),
                temperature=self.temperature,
                timeout_seconds=self.timeout_seconds,
            )
        except AuthenticationError as e:
            raise ExternalServiceError(f"{self.name} oracle unauthorized: {e}") from e
        except LLMError as e:
            raise ExternalServiceError(str(e)) from e
