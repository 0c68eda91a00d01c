from __future__ import annotations

from typing import Any, Optional

import httpx

from ..config import Config
from ..exceptions import LLMError
from .base import BaseDriver, Completion

ANTHROPIC_VERSION = "2023-06-01"

# Anthropic stop reasons mapped onto the OpenAI vocabulary.
STOP_REASONS = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
}


def split_system(messages: list[dict[str, Any]]) -> tuple[str, list[dict[str, Any]]]:
    """Separate system messages, which the messages API takes as a field."""
    system_parts: list[str] = []
    chat: list[dict[str, Any]] = []
    for message in messages:
        if message.get("role") == "system":
            system_parts.append(str(message.get("content", "")))
        else:
            chat.append({"role": message.get("role", "user"), "content": message.get("content", "")})
    return "\n\n".join(system_parts), chat


class AnthropicDriver(BaseDriver):
    """Driver handling Anthropic API calls (messages endpoint)."""

    def __init__(
        self,
        config: Config,
        api_key: str,
        debug: bool = False,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__(config, api_key, debug)
        self._client = client or httpx.AsyncClient(timeout=self._request_timeout)

    @property
    def url(self) -> str:
        return self.config.llm.endpoint.rstrip("/") + "/v1/messages"

    async def complete(
        self,
        messages: list[dict[str, Any]],
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> Completion:
        system, chat = split_system(messages)
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        payload: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": chat,
        }
        if system:
            payload["system"] = system
        if self.debug:
            print(f"DEBUG: anthropic.invoke model={model} max_tokens={max_tokens}")

        try:
            response = await self._client.post(self.url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            raise LLMError(f"Anthropic network error during messages request: {e}") from e
        if response.status_code >= 400:
            raise LLMError(f"Anthropic error {response.status_code}: {response.text}")

        try:
            data = response.json()
        except ValueError as e:
            raise LLMError(f"Anthropic returned a non-JSON response: {e}") from e
        texts = [
            chunk.get("text", "")
            for chunk in data.get("content") or []
            if chunk.get("type") == "text"
        ]
        stop_reason = data.get("stop_reason")
        finish_reason = STOP_REASONS.get(stop_reason, stop_reason)
        content = "\n".join(filter(None, texts))
        if self.debug:
            print(
                "DEBUG: anthropic.response stop_reason={} len={}".format(
                    stop_reason, len(content)
                )
            )
        return Completion(content=content, finish_reason=finish_reason)

    async def aclose(self) -> None:
        await self._client.aclose()
