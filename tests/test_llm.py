import asyncio
import json
import types

import httpx
import openai
import pytest

from aico.config import Config, load_config
from aico.exceptions import LLMError
from aico.llm import (
    LLMClient,
    normalize_branch_name,
    parse_commit_message,
    parse_pull_request_message,
    retry_model_for,
)
from aico.providers.anthropic_driver import AnthropicDriver, split_system
from aico.providers.base import BaseDriver, Completion, request_timeout
from aico.providers.openai_driver import OpenAIDriver, extract_content

MESSAGES = [
    {"role": "system", "content": "be terse"},
    {"role": "user", "content": "diff"},
]


def test_parse_commit_message_strips_markdown_and_kebabs_scope():
    message = parse_commit_message("**feat(PromptBuilder): add retry hint**\n\n* keep violations\n")

    assert message.title == "feat(prompt-builder): add retry hint"
    assert message.body == "- keep violations"


def test_parse_commit_message_without_body():
    message = parse_commit_message("`fix: guard nil user`\n\n\n")

    assert message.title == "fix: guard nil user"
    assert message.body is None


def test_parse_pull_request_message():
    raw = "```markdown\n# Title: feat(Checkout): keep carts\n\n### Summary\nCarts survive.\n```"

    message = parse_pull_request_message(raw)

    assert message.title == "feat(checkout): keep carts"
    assert message.body == "### Summary\nCarts survive."
    assert parse_pull_request_message("  \n").title == ""


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("feat/add-dark-mode", "feat/add-dark-mode"),
        ("`Fix/Login Crash!`\nbecause", "fix/login-crash"),
        ("dark mode toggle", "chore/dark-mode-toggle"),
        (
            "feat/add-support-for-exporting-reports-as-spreadsheets",
            "feat/add-support-for-exporting-reports",
        ),
    ],
)
def test_normalize_branch_name(raw, expected):
    name = normalize_branch_name(raw)

    assert name == expected
    assert len(name) <= 40


def test_normalize_branch_name_rejects_empty():
    with pytest.raises(LLMError):
        normalize_branch_name("```\n")


def test_retry_model_for():
    assert retry_model_for("gpt-4o-mini") == "gpt-4o"
    assert retry_model_for("gpt-5-mini") == "gpt-5"
    assert retry_model_for("claude-3-5-haiku-latest") == "claude-3-5-haiku-latest"


def test_client_requires_api_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(LLMError, match="OPENAI_API_KEY"):
        LLMClient(load_config())


class _RecordingDriver(BaseDriver):
    def __init__(self, completion):
        super().__init__(Config(), "key")
        self.completion = completion
        self.calls = []

    async def complete(self, messages, model, max_tokens, temperature):
        self.calls.append((model, max_tokens, temperature))
        return self.completion


def test_client_applies_defaults_and_strips_content():
    driver = _RecordingDriver(Completion("  feat: add x \n", "stop"))
    client = LLMClient(Config(), driver=driver)

    result = asyncio.run(client.complete(MESSAGES))
    retried = asyncio.run(client.complete(MESSAGES, model="gpt-4o", max_tokens=350, temperature=0.1))

    assert result == Completion("feat: add x", "stop")
    assert retried.finished_cleanly
    assert driver.calls == [("gpt-4o-mini", 200, 0.3), ("gpt-4o", 350, 0.1)]


def test_request_timeout_from_env(monkeypatch):
    monkeypatch.setenv("AICO_LLM_REQUEST_TIMEOUT", "5")
    assert request_timeout() == 5.0
    monkeypatch.setenv("AICO_LLM_REQUEST_TIMEOUT", "soon")
    assert request_timeout() == 60.0


def test_completion_finish_reason():
    assert Completion("x").finished_cleanly
    assert not Completion("x", "length").finished_cleanly


# --------------------------------------------------------------------------
# OpenAI driver
# --------------------------------------------------------------------------


def _fake_openai_client(*outcomes):
    calls = []

    async def create(**kwargs):
        calls.append(kwargs)
        outcome = outcomes[len(calls) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    client = types.SimpleNamespace(chat=types.SimpleNamespace(completions=types.SimpleNamespace(create=create)))
    return client, calls


def _response(content, finish_reason="stop"):
    message = types.SimpleNamespace(content=content)
    return types.SimpleNamespace(choices=[types.SimpleNamespace(message=message, finish_reason=finish_reason)])


def _bad_request(message):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    return openai.BadRequestError(message, response=httpx.Response(400, request=request), body=None)


def test_openai_driver_passes_sampling_parameters():
    driver = OpenAIDriver(Config(), "sk-test")
    driver._client, calls = _fake_openai_client(_response("fix: guard nil user"))

    result = asyncio.run(driver.complete(MESSAGES, "gpt-4o-mini", 200, 0.3))

    assert result == Completion("fix: guard nil user", "stop")
    assert calls[0]["max_tokens"] == 200
    assert calls[0]["top_p"] == 0.9


def test_openai_driver_retries_with_max_completion_tokens():
    driver = OpenAIDriver(Config(), "sk-test")
    driver._client, calls = _fake_openai_client(
        _bad_request("Unsupported parameter: 'max_tokens' is not supported with this model."),
        _response("fix: guard nil user", "length"),
    )

    result = asyncio.run(driver.complete(MESSAGES, "o3-mini", 200, 0.3))

    assert result.finish_reason == "length"
    assert "max_tokens" not in calls[1]
    assert calls[1]["max_completion_tokens"] == 200


def test_openai_driver_wraps_errors():
    driver = OpenAIDriver(Config(), "sk-test")
    driver._client, _calls = _fake_openai_client(_bad_request("Invalid model"))

    with pytest.raises(LLMError, match="OpenAI client error"):
        asyncio.run(driver.complete(MESSAGES, "gpt-4o", 200, 0.3))


def test_openai_driver_requires_choices():
    driver = OpenAIDriver(Config(), "sk-test")
    driver._client, _calls = _fake_openai_client(types.SimpleNamespace(choices=[]))

    with pytest.raises(LLMError, match="Missing choices"):
        asyncio.run(driver.complete(MESSAGES, "gpt-4o", 200, 0.3))


def test_extract_content_joins_fragments():
    message = types.SimpleNamespace(content=[{"text": "feat: "}, types.SimpleNamespace(text="add x")])

    assert extract_content(message) == "feat: add x"
    assert extract_content(None) == ""


# --------------------------------------------------------------------------
# Anthropic driver
# --------------------------------------------------------------------------


def _anthropic_config():
    return load_config(overrides={"provider": "anthropic"})


def test_split_system():
    system, chat = split_system(MESSAGES)

    assert system == "be terse"
    assert chat == [{"role": "user", "content": "diff"}]


def test_anthropic_driver_posts_messages_request():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["payload"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"content": [{"type": "text", "text": "feat(core): add thing"}], "stop_reason": "max_tokens"},
        )

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    driver = AnthropicDriver(_anthropic_config(), "ant-key", client=client)

    result = asyncio.run(driver.complete(MESSAGES, "claude-3-5-haiku-latest", 200, 0.3))

    assert result == Completion("feat(core): add thing", "length")
    assert seen["url"] == "https://api.anthropic.com/v1/messages"
    assert seen["headers"]["x-api-key"] == "ant-key"
    assert seen["payload"]["system"] == "be terse"
    assert seen["payload"]["messages"] == [{"role": "user", "content": "diff"}]


def test_anthropic_driver_raises_on_error_status():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(401, text="bad key")))
    driver = AnthropicDriver(_anthropic_config(), "ant-key", client=client)

    with pytest.raises(LLMError, match="Anthropic error 401: bad key"):
        asyncio.run(driver.complete(MESSAGES, "claude-3-5-haiku-latest", 200, 0.3))


def test_anthropic_driver_rejects_non_json_reply():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>")))
    driver = AnthropicDriver(_anthropic_config(), "ant-key", client=client)

    with pytest.raises(LLMError, match="non-JSON response"):
        asyncio.run(driver.complete(MESSAGES, "claude-3-5-haiku-latest", 200, 0.3))


def test_anthropic_driver_wraps_network_errors():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    driver = AnthropicDriver(_anthropic_config(), "ant-key", client=client)

    with pytest.raises(LLMError, match="network error"):
        asyncio.run(driver.complete(MESSAGES, "claude-3-5-haiku-latest", 200, 0.3))


def test_client_selects_anthropic_driver(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "ant-key")

    client = LLMClient(_anthropic_config())

    assert isinstance(client._driver, AnthropicDriver)
    asyncio.run(client.aclose())
