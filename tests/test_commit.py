import asyncio
import types

import pytest

from aico.commit import CommitGenerator
from aico.config import CommitConfig, Config
from aico.exceptions import LLMError
from aico.heuristics import CommitHeuristics, PullRequestHints, ScopeInferrer
from aico.prompts import PromptBuilder
from aico.providers.base import Completion
from aico.repair import SubjectRepairer
from aico.validation import CommitValidator, PullRequestValidator

INTERNAL_PATHS = ("src/services/OpenAI.service.ts", "src/constants/limits.ts")

VALID_PR = """feat(checkout): keep carts after failed payments

### Summary
Carts survive a failed payment.

### Changes
- Keep cart items when the payment call fails
- Show the retry banner on the cart screen

### QA Focus
- Checkout: fail a payment and confirm the cart is intact
- Checkout: retry the payment from the banner"""

GROUPED_WITH_INFRA = """feat(checkout): keep carts after failed payments

### Summary
Carts survive a failed payment.

### Services
- Retry the payment call

### Checkout
- Keep cart items

### QA Focus
- Checkout: fail a payment and confirm the cart is intact
- Checkout: retry the payment from the banner"""


class _ScriptedLLM:
    """Async stand-in for LLMClient replaying canned completions."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def complete(self, messages, model=None, max_tokens=None, temperature=None):
        self.calls.append(
            {"messages": messages, "model": model, "max_tokens": max_tokens, "temperature": temperature}
        )
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, str):
            return Completion(outcome, "stop")
        return outcome


def _fake_git():
    return types.SimpleNamespace(
        get_branch_name=lambda: "feat/checkout",
        get_merge_heads=lambda: {},
        get_recent_commit_subjects=lambda count: [],
    )


def _generator(llm, pr_hints=None, **commit):
    config = Config(commit=CommitConfig(**commit))
    heuristics = CommitHeuristics()
    scopes = ScopeInferrer()
    validator = CommitValidator()
    pr_heuristics = None
    if pr_hints is not None:
        pr_heuristics = types.SimpleNamespace(infer=lambda *args, **kwargs: pr_hints)
    return CommitGenerator(
        config,
        llm,
        PromptBuilder(config, heuristics, scopes, _fake_git()),
        validator,
        SubjectRepairer(config.commit, heuristics, scopes, validator),
        heuristics,
        pr_validator=PullRequestValidator(),
        pr_heuristics=pr_heuristics,
    )


def _run(coro):
    return asyncio.run(coro)


def test_valid_first_attempt_is_accepted(make_diff):
    llm = _ScriptedLLM("fix(auth): reject expired sessions")
    diff = make_diff(paths=("src/auth/session.py",))

    message = _run(_generator(llm).generate_commit_message(diff))

    assert message.title == "fix(auth): reject expired sessions"
    assert len(llm.calls) == 1
    assert llm.calls[0]["model"] == "gpt-4o-mini"


def test_internal_feat_is_repaired_without_retry(make_diff):
    # Given an internal-only diff and a feat subject from the model
    llm = _ScriptedLLM("feat(services): add retry queue")
    diff = make_diff(paths=INTERNAL_PATHS, num_stat={path: (8, 2) for path in INTERNAL_PATHS})

    # When generating
    message = _run(_generator(llm).generate_commit_message(diff))

    # Then the type is repaired locally
    assert message.title == "refactor(services): add retry queue"
    assert len(llm.calls) == 1


def test_docs_only_change_is_forced_to_docs(make_diff):
    llm = _ScriptedLLM("fix: correct install steps")
    diff = make_diff(paths=("README.md",))

    message = _run(_generator(llm).generate_commit_message(diff))

    assert message.title == "docs(readme): correct install steps"
    assert len(llm.calls) == 1


def test_long_subject_is_truncated(make_diff):
    llm = _ScriptedLLM(
        "feat(parser): support nested arrays and inline tables inside deeply recursive configuration documents"
    )
    diff = make_diff(paths=("src/parser.py",))

    message = _run(_generator(llm).generate_commit_message(diff))

    assert message.title.startswith("feat(parser): support nested arrays")
    assert len(message.title) <= 72
    assert len(llm.calls) == 1


def test_behavior_template_respects_max_title_length(make_diff):
    llm = _ScriptedLLM("feat: changes")
    diff = make_diff(paths=("src/translations/en.json", "src/translations/de.json"))
    generator = _generator(llm, max_title_length=30, enable_behavior_templates=True)

    message = _run(generator.generate_commit_message(diff))

    assert message.title == "feat(translations): add new"
    assert generator.validator.validate(message, generator._validation_context(diff, False)).valid


def test_disallowed_body_is_dropped(make_diff):
    llm = _ScriptedLLM("fix: guard nil user\n\n- reject empty ids")
    diff = make_diff(paths=("src/app.py",))

    message = _run(_generator(llm).generate_commit_message(diff))

    assert message.title == "fix: guard nil user"
    assert message.body is None


def test_body_is_kept_when_allowed(make_diff):
    llm = _ScriptedLLM("fix: guard nil user\n\n- reject empty ids")
    diff = make_diff(paths=("src/app.py",))

    message = _run(_generator(llm, include_body="always").generate_commit_message(diff))

    assert message.format() == "fix: guard nil user\n\n- reject empty ids"


def test_unusable_output_retries_once_then_falls_back(make_diff):
    # Given a model that never returns a conventional subject
    llm = _ScriptedLLM("Added a bunch of things", "Added a bunch of things")
    diff = make_diff(paths=("main.go",))

    # When generating
    message = _run(_generator(llm).generate_commit_message(diff))

    # Then exactly one stricter retry happens before the literal fallback
    assert message.title == "chore: align commit flow"
    assert len(llm.calls) == 2
    retry = llm.calls[1]
    assert retry["model"] == "gpt-4o"
    assert retry["temperature"] == 0.1
    assert retry["max_tokens"] == 350
    prompt = retry["messages"][1]["content"]
    assert "Previous output:\nAdded a bunch of things" in prompt
    assert "- Subject must follow Conventional Commits format" in prompt


def test_retry_output_is_used_when_valid(make_diff):
    llm = _ScriptedLLM("Added things", "fix(cli): exit with status one on errors")
    diff = make_diff(paths=("src/cli.py",))

    message = _run(_generator(llm).generate_commit_message(diff))

    assert message.title == "fix(cli): exit with status one on errors"


def test_empty_first_response_triggers_retry(make_diff):
    llm = _ScriptedLLM("", "fix: guard nil user")

    message = _run(_generator(llm).generate_commit_message(make_diff(paths=("src/app.py",))))

    assert message.title == "fix: guard nil user"
    assert len(llm.calls) == 2


def test_no_text_at_all_raises(make_diff):
    llm = _ScriptedLLM("", "")

    with pytest.raises(LLMError, match="Empty response from model"):
        _run(_generator(llm).generate_commit_message(make_diff(paths=("src/app.py",))))


def test_first_call_error_propagates(make_diff):
    llm = _ScriptedLLM(LLMError("OpenAI client error: boom"))

    with pytest.raises(LLMError, match="boom"):
        _run(_generator(llm).generate_commit_message(make_diff(paths=("src/app.py",))))


def test_retry_error_falls_back(make_diff):
    llm = _ScriptedLLM("Added things", LLMError("timeout"))

    message = _run(_generator(llm).generate_commit_message(make_diff(paths=("main.go",))))

    assert message.title == "chore: align commit flow"


def test_unfinished_retry_falls_back(make_diff):
    llm = _ScriptedLLM("Added things", Completion("fix: guard nil", "length"))

    message = _run(_generator(llm).generate_commit_message(make_diff(paths=("main.go",))))

    assert message.title == "chore: align commit flow"
    assert len(llm.calls) == 2


def test_should_include_body(make_diff):
    generator = _generator(_ScriptedLLM())
    small = make_diff(paths=("a.py",), num_stat={"a.py": (3, 1)})
    many_files = make_diff(paths=("a.py", "b.py", "c.py", "d.py"))
    many_lines = make_diff(paths=("a.py",), num_stat={"a.py": (120, 40)})

    assert not generator.should_include_body(small)
    assert generator.should_include_body(small, "explain the cache")
    assert generator.should_include_body(many_files)
    assert generator.should_include_body(many_lines)
    assert _generator(_ScriptedLLM(), include_body="always").should_include_body(small)
    assert not _generator(_ScriptedLLM(), include_body="never").should_include_body(many_files, "ctx")


# --------------------------------------------------------------------------
# Pull requests
# --------------------------------------------------------------------------


def test_grouped_rejection_retries_with_default_template(make_diff):
    # Given grouped hints and a first draft with an infra heading
    hints = PullRequestHints(type="feat", scope="checkout", template="grouped", groupings=("checkout", "profile"))
    llm = _ScriptedLLM(GROUPED_WITH_INFRA, VALID_PR)
    diff = make_diff(paths=("src/checkout/cart.ts",))

    # When generating the pull request
    message = _run(_generator(llm, pr_hints=hints).generate_pull_request(diff, "feat/checkout", "main"))

    # Then the second call asks for the default template and wins
    assert message.title == "feat(checkout): keep carts after failed payments"
    assert "### Changes" in message.body
    assert len(llm.calls) == 2
    assert "Template: default (do not change)" in llm.calls[1]["messages"][1]["content"]
    assert llm.calls[0]["max_tokens"] == 900


def test_failed_retry_returns_first_attempt(make_diff):
    hints = PullRequestHints(type="feat", scope="checkout", template="default")
    bad = "feat(checkout): keep carts\n\n### Summary\nCarts survive."
    llm = _ScriptedLLM(bad, bad)

    message = _run(_generator(llm, pr_hints=hints).generate_pull_request(make_diff(paths=("src/checkout/cart.ts",))))

    assert message.title == "feat(checkout): keep carts"
    assert len(llm.calls) == 2
    assert "Violations:\n- Missing QA Focus section" in llm.calls[1]["messages"][1]["content"]


def test_pull_request_retry_error_returns_first(make_diff):
    hints = PullRequestHints(type="feat", scope="checkout", template="default")
    bad = "feat(checkout): keep carts\n\n### Summary\nCarts survive."
    llm = _ScriptedLLM(bad, LLMError("timeout"))

    message = _run(_generator(llm, pr_hints=hints).generate_pull_request(make_diff(paths=("a.ts",))))

    assert message.body == "### Summary\nCarts survive."


def test_empty_pull_request_raises(make_diff):
    hints = PullRequestHints(type="feat", scope="checkout", template="default")

    with pytest.raises(LLMError):
        _run(_generator(_ScriptedLLM("  "), pr_hints=hints).generate_pull_request(make_diff(paths=("a.ts",))))


def test_branch_name_is_normalized(make_diff):
    llm = _ScriptedLLM("Fix/Login Crash\n\nThis name describes the fix.")

    name = _run(_generator(llm).generate_branch_name("fix login crash"))

    assert name == "fix/login-crash"
    assert llm.calls[0]["max_tokens"] == 60
