from __future__ import annotations

from typing import Any

import openai

from ..config import Config
from ..exceptions import LLMError
from .base import BaseDriver, Completion


def extract_content(message: Any) -> str:
    """Return message text, joining list-of-fragment content when present."""
    content = getattr(message, "content", "") if message is not None else ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        fragments: list[str] = []
        for part in content:
            if isinstance(part, dict):
                text = part.get("text") or part.get("content") or ""
            else:
                text = getattr(part, "text", "") or getattr(part, "content", "")
            if text:
                fragments.append(str(text))
        return "".join(fragments).strip()
    return ""


class OpenAIDriver(BaseDriver):
    """Driver for OpenAI and OpenAI-compatible chat completion endpoints."""

    def __init__(self, config: Config, api_key: str, debug: bool = False) -> None:
        super().__init__(config, api_key, debug)
        self._client = openai.AsyncOpenAI(
            base_url=config.llm.endpoint,
            api_key=api_key,
            timeout=self._request_timeout,
        )

    async def complete(
        self,
        messages: list[dict[str, Any]],
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> Completion:
        llm = self.config.llm
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "top_p": llm.top_p,
            "frequency_penalty": llm.frequency_penalty,
            "presence_penalty": llm.presence_penalty,
        }
        if self.debug:
            print(
                "DEBUG: openai.invoke model={} max_tokens={} temperature={}".format(
                    model, max_tokens, temperature
                )
            )
        try:
            response = await self._client.chat.completions.create(**kwargs)
        except openai.BadRequestError as e:
            msg = str(e)
            if "Unsupported parameter" not in msg or "max_tokens" not in msg:
                raise LLMError(f"OpenAI client error: {e}") from e
            # Newer models only accept max_completion_tokens.
            if self.debug:
                print("DEBUG: openai.retry_param param=max_completion_tokens")
            kwargs["max_completion_tokens"] = kwargs.pop("max_tokens")
            try:
                response = await self._client.chat.completions.create(**kwargs)
            except openai.OpenAIError as retry_error:
                raise LLMError(f"OpenAI client error: {retry_error}") from retry_error
        except openai.OpenAIError as e:
            raise LLMError(f"OpenAI client error: {e}") from e

        try:
            choice = response.choices[0]
        except (AttributeError, IndexError):
            raise LLMError("Missing choices in OpenAI response") from None

        content = extract_content(getattr(choice, "message", None))
        finish_reason = getattr(choice, "finish_reason", None)
        if self.debug:
            print(
                "DEBUG: openai.response finish_reason={} len={}".format(
                    finish_reason, len(content)
                )
            )
        return Completion(content=content, finish_reason=finish_reason)

    async def aclose(self) -> None:
        await self._client.close()
