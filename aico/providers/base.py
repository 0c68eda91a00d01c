from __future__ import annotations

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from ..config import Config

REQUEST_TIMEOUT_ENV = "AICO_LLM_REQUEST_TIMEOUT"
DEFAULT_REQUEST_TIMEOUT = 60.0


@dataclass(frozen=True)
class Completion:
    """Text returned by a provider plus its normalised finish reason.

    ``finish_reason`` is ``"stop"`` for a clean completion and ``"length"``
    when the output was cut off by the token limit.
    """

    content: str
    finish_reason: Optional[str] = None

    @property
    def finished_cleanly(self) -> bool:
        return self.finish_reason in (None, "stop")


def request_timeout() -> float:
    timeout_env = os.environ.get(REQUEST_TIMEOUT_ENV)
    try:
        return float(timeout_env) if timeout_env else DEFAULT_REQUEST_TIMEOUT
    except ValueError:
        return DEFAULT_REQUEST_TIMEOUT


class BaseDriver(ABC):
    """Abstract base for provider-specific chat completion calls.

    Each driver owns one provider's client and parameter semantics. Prompt
    building, validation and retry policy stay in the orchestrator so every
    provider behaves the same.
    """

    def __init__(self, config: Config, api_key: str, debug: bool = False) -> None:
        self.config = config
        self.api_key = api_key
        self.debug = debug
        self._request_timeout = request_timeout()

    @abstractmethod
    async def complete(
        self,
        messages: list[dict[str, Any]],
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> Completion:
        """Return the completion for ``messages``.

        Raises:
            LLMError: if the provider call fails.
        """
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release any network resources held by the driver."""
