"""LLM integration for aico.

``LLMClient`` picks a provider driver and exposes one ``complete`` call.
The parsing helpers turn raw model text into commit, pull request and
branch values without any validation; that is left to the orchestrator.
"""

from __future__ import annotations

import re
from typing import Any, Optional

from .config import Config
from .exceptions import LLMError
from .models import CommitMessage, PullRequestMessage
from .providers.anthropic_driver import AnthropicDriver
from .providers.base import BaseDriver, Completion
from .providers.openai_driver import OpenAIDriver

__all__ = [
    "BRANCH_MAX_LENGTH",
    "BRANCH_PREFIXES",
    "Completion",
    "LLMClient",
    "normalize_branch_name",
    "parse_commit_message",
    "parse_pull_request_message",
    "retry_model_for",
]

BRANCH_PREFIXES = ("feat/", "fix/", "refactor/", "chore/", "style/", "docs/")
BRANCH_MAX_LENGTH = 40
RETRY_MODEL_UPGRADES = {"gpt-4o-mini": "gpt-4o"}

_SCOPE_IN_HEADER = re.compile(r"^(\w+)\(([^)]+)\):")


class LLMClient:
    """Provider-aware model completion client."""

    def __init__(
        self,
        config: Config,
        debug: bool = False,
        driver: Optional[BaseDriver] = None,
    ) -> None:
        self.config = config
        self.debug = debug
        self.provider = config.provider
        if driver is not None:
            self._driver = driver
            return

        api_key = config.resolve_api_key()
        if not api_key:
            raise LLMError(
                f"Environment variable '{config.llm.api_key_env}' is not set or empty."
            )
        if self.provider == "anthropic":
            self._driver = AnthropicDriver(config, api_key, debug=debug)
        elif self.provider == "openai":
            self._driver = OpenAIDriver(config, api_key, debug=debug)
        else:
            raise LLMError(f"Unsupported provider: {self.provider}")
        if debug:
            print(f"DEBUG: llm.init provider={self.provider} model={config.llm.model}")

    async def complete(
        self,
        messages: list[dict[str, Any]],
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> Completion:
        """Run one chat completion.

        Args:
            messages: ``{"role", "content"}`` dicts, system message first.
            model: Model id; defaults to the configured model.
            max_tokens: Completion token limit; defaults to config.
            temperature: Sampling temperature; defaults to config.

        Returns:
            The stripped completion text and its finish reason.

        Raises:
            LLMError: if the provider call fails.
        """
        llm = self.config.llm
        completion = await self._driver.complete(
            messages,
            model or llm.model,
            max_tokens if max_tokens is not None else llm.max_tokens,
            temperature if temperature is not None else llm.temperature,
        )
        return Completion(
            content=(completion.content or "").strip(),
            finish_reason=completion.finish_reason,
        )

    async def aclose(self) -> None:
        await self._driver.aclose()


def retry_model_for(model: str) -> str:
    """Return the stricter model used for a retry attempt."""
    if model in RETRY_MODEL_UPGRADES:
        return RETRY_MODEL_UPGRADES[model]
    if model.startswith("gpt-") and model.endswith("-mini"):
        return model[: -len("-mini")]
    return model


def kebab_scope(header: str) -> str:
    """Lower-case and kebab the scope of a ``type(Scope):`` header."""

    def _convert(match: re.Match[str]) -> str:
        scope = re.sub(r"([a-z0-9])([A-Z])", r"\1-\2", match.group(2))
        scope = re.sub(r"([A-Z])([A-Z][a-z])", r"\1-\2", scope)
        return f"{match.group(1)}({scope.lower()}):"

    return _SCOPE_IN_HEADER.sub(_convert, header, count=1)


def strip_markdown(text: str) -> str:
    # Bullets first, so "* item" survives the asterisk strip.
    text = re.sub(r"^\s*[-*]\s+", "- ", text, flags=re.MULTILINE)
    text = text.replace("`", "").replace("**", "").replace("*", "")
    text = re.sub(r"^#+\s*", "", text, flags=re.MULTILINE)
    return text.strip()


def parse_commit_message(raw: str) -> CommitMessage:
    """Split raw model output into a commit title and optional body."""
    lines = kebab_scope(strip_markdown(raw)).split("\n")
    title = lines[0].strip() if lines else ""

    body_lines: list[str] = []
    for line in lines[1:]:
        line = line.strip()
        if line:
            body_lines.append(line)
        elif body_lines:
            body_lines.append("")
    while body_lines and not body_lines[-1]:
        body_lines.pop()
    return CommitMessage(title=title, body="\n".join(body_lines) or None)


def parse_pull_request_message(raw: str) -> PullRequestMessage:
    """Split raw model output into a PR title and Markdown body.

    Headings in the body are kept; only the title line is cleaned.
    """
    text = raw.replace("```markdown", "").replace("```", "").strip()
    lines = text.split("\n")
    while lines and not lines[0].strip():
        lines.pop(0)
    if not lines:
        return PullRequestMessage(title="", body="")
    title = re.sub(r"^#+\s*", "", lines[0]).replace("`", "").replace("**", "").strip()
    title = re.sub(r"^title:\s*", "", title, flags=re.IGNORECASE)
    body = "\n".join(lines[1:]).strip()
    return PullRequestMessage(title=kebab_scope(title), body=body)


def normalize_branch_name(raw: str) -> str:
    """Coerce model output into a ``prefix/short-name`` branch name.

    Raises:
        LLMError: if nothing usable remains.
    """
    first = raw.strip().split("\n", 1)[0].strip() if raw else ""
    name = re.sub(r"[`'\"]", "", first).lower()
    name = re.sub(r"[^a-z0-9/-]", "-", name)
    name = re.sub(r"-+", "-", name).strip("-")
    if not name or name.strip("/") == "":
        raise LLMError("Model returned an empty branch name")

    if not name.startswith(BRANCH_PREFIXES):
        name = "chore/" + name.strip("/")

    if len(name) > BRANCH_MAX_LENGTH:
        prefix, _, rest = name.partition("/")
        budget = BRANCH_MAX_LENGTH - len(prefix) - 1
        kept = ""
        for part in rest.split("-"):
            candidate = f"{kept}-{part}" if kept else part
            if len(candidate) > budget:
                break
            kept = candidate
        name = f"{prefix}/{kept or rest[:budget].rstrip('-')}"
    return name
