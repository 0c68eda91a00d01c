"""Commit, pull request and branch message generation for aico."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional, Sequence

from .config import Config
from .exceptions import LLMError
from .heuristics import CommitHeuristics, PullRequestHeuristics, PullRequestHints
from .llm import (
    LLMClient,
    normalize_branch_name,
    parse_commit_message,
    parse_pull_request_message,
    retry_model_for,
)
from .models import CommitMessage, ProcessedDiff, PullRequestMessage
from .prompts import (
    BRANCH_SYSTEM_PROMPT,
    COMMIT_SYSTEM_PROMPT,
    PULL_REQUEST_SYSTEM_PROMPT,
    PromptBuilder,
)
from .repair import SubjectRepairer
from .validation import CommitValidator, PullRequestValidator, ValidationContext

MAX_MODEL_CALLS = 2
RETRY_MAX_TEMPERATURE = 0.1
RETRY_MIN_TOKENS = 350
PULL_REQUEST_MIN_TOKENS = 900
BRANCH_MAX_TOKENS = 60

BODY_MIN_FILES = 4
BODY_MIN_LINES = 150

EMPTY_RESPONSE_ERROR = "Empty response from model"
RETRY_UNFINISHED_ERROR = "Retry did not finish successfully"
GROUPED_TEMPLATE_ERROR_MARKERS = ("Group heading", "Grouped template")


@dataclass(frozen=True)
class AttemptResult:
    """Outcome of one model call: an accepted message or the errors left."""

    message: Optional[CommitMessage] = None
    parsed: Optional[CommitMessage] = None
    errors: tuple[str, ...] = ()


class CommitGenerator:
    """Drives model calls through parse, validate, repair, retry and fallback.

    At most two model calls are made per commit message. Anything the
    second call cannot fix ends in a deterministic fallback subject that
    always validates.
    """

    def __init__(
        self,
        config: Config,
        llm_client: LLMClient,
        prompt_builder: PromptBuilder,
        validator: CommitValidator,
        repairer: SubjectRepairer,
        heuristics: CommitHeuristics,
        pr_validator: Optional[PullRequestValidator] = None,
        pr_heuristics: Optional[PullRequestHeuristics] = None,
        debug: bool = False,
    ) -> None:
        self.config = config
        self.llm_client = llm_client
        self.prompt_builder = prompt_builder
        self.validator = validator
        self.repairer = repairer
        self.heuristics = heuristics
        self.pr_validator = pr_validator or PullRequestValidator()
        self.pr_heuristics = pr_heuristics
        self.debug = debug

    def should_include_body(self, diff: ProcessedDiff, user_context: str = "") -> bool:
        mode = self.config.commit.include_body
        if mode == "always":
            return True
        if mode == "never":
            return False
        return (
            diff.stats.files_changed >= BODY_MIN_FILES
            or diff.stats.lines_changed >= BODY_MIN_LINES
            or bool(user_context and user_context.strip())
        )

    def _validation_context(
        self, diff: ProcessedDiff, include_body_allowed: bool
    ) -> ValidationContext:
        classification = self.heuristics.classify(diff)
        return ValidationContext(
            max_title_length=self.config.commit.max_title_length,
            include_body_mode=self.config.commit.include_body,
            include_body_allowed=include_body_allowed,
            internal_change=classification.is_internal_change,
            docs_only=classification.is_docs_only,
        )

    async def generate_commit_message(
        self, diff: ProcessedDiff, user_context: str = ""
    ) -> CommitMessage:
        """Generate a commit message that passes validation.

        Args:
            diff: Processed staged diff.
            user_context: Optional free-text guidance from the user.

        Returns:
            A valid commit message, repaired or synthesised if needed.

        Raises:
            LLMError: if the first model call fails, or no call ever
                produced text to work from.
        """
        include_body_allowed = self.should_include_body(diff, user_context)
        prompt = self.prompt_builder.build_commit_prompt(
            diff,
            user_context,
            include_body_allowed,
            self.config.commit.include_body,
        )
        context = self._validation_context(diff, include_body_allowed)
        llm = self.config.llm

        last_message: Optional[CommitMessage] = None
        errors: tuple[str, ...] = ()
        for attempt in range(MAX_MODEL_CALLS):
            is_retry = attempt > 0
            if is_retry:
                previous = last_message.format() if last_message else ""
                user_prompt = self.prompt_builder.build_retry_prompt(prompt, previous, errors)
                model = retry_model_for(llm.model)
                temperature = min(llm.temperature, RETRY_MAX_TEMPERATURE)
                max_tokens = max(llm.max_tokens, RETRY_MIN_TOKENS)
                if self.debug:
                    print(
                        "DEBUG: commit.retry model={} errors='{}'".format(
                            model, "; ".join(errors)
                        )
                    )
            else:
                user_prompt = prompt
                model, temperature, max_tokens = llm.model, llm.temperature, llm.max_tokens

            messages = [
                {"role": "system", "content": COMMIT_SYSTEM_PROMPT},
                {"role": "user", "content": user_prompt},
            ]
            try:
                completion = await self.llm_client.complete(
                    messages, model=model, max_tokens=max_tokens, temperature=temperature
                )
            except LLMError as e:
                if not is_retry:
                    raise
                if self.debug:
                    print(f"DEBUG: commit.retry_failed error='{e}'")
                break

            if not completion.content:
                result = AttemptResult(errors=(EMPTY_RESPONSE_ERROR,))
            elif is_retry and not completion.finished_cleanly:
                result = AttemptResult(errors=(RETRY_UNFINISHED_ERROR,))
            else:
                result = self._evaluate(diff, completion.content, context)

            if result.message is not None:
                if self.debug:
                    print(f"DEBUG: commit.accept attempt={attempt + 1} title='{result.message.title}'")
                return result.message
            if result.parsed is not None:
                last_message = result.parsed
            errors = result.errors
            if is_retry or not self._needs_model_retry(errors):
                break

        if last_message is None:
            raise LLMError(EMPTY_RESPONSE_ERROR)
        title = self.repairer.build_fallback(diff, last_message.title)
        if self.debug:
            print(f"DEBUG: commit.fallback title='{title}'")
        return CommitMessage(title=title)

    def _evaluate(
        self, diff: ProcessedDiff, content: str, context: ValidationContext
    ) -> AttemptResult:
        parsed = parse_commit_message(content)
        validation = self.validator.validate(parsed, context)
        if validation.valid:
            return AttemptResult(message=parsed, parsed=parsed)

        subject_only = parsed.without_body()
        if self.validator.validate(subject_only, context).valid:
            return AttemptResult(message=subject_only, parsed=parsed)

        for repair in (self.repairer.repair_docs, self.repairer.repair):
            repaired = repair(diff, parsed.title)
            if repaired:
                if self.debug:
                    print(f"DEBUG: commit.repaired from='{parsed.title}' to='{repaired}'")
                return AttemptResult(message=CommitMessage(title=repaired), parsed=parsed)

        return AttemptResult(parsed=parsed, errors=validation.errors)

    def _needs_model_retry(self, errors: Sequence[str]) -> bool:
        structural, _ = self.validator.split_errors(errors)
        return bool(structural) or any(
            EMPTY_RESPONSE_ERROR in error or RETRY_UNFINISHED_ERROR in error
            for error in errors
        )

    async def generate_pull_request(
        self,
        diff: ProcessedDiff,
        branch_name: str = "",
        base_branch: Optional[str] = None,
        commit_subjects: Sequence[str] = (),
        user_context: str = "",
    ) -> PullRequestMessage:
        """Generate a pull request title and body.

        A failed first attempt gets one more call: the ``default`` template
        when the grouped layout was rejected, otherwise a repair prompt.
        When both fail, the first attempt is returned unchanged.
        """
        if self.pr_heuristics is None:
            raise LLMError("Pull request heuristics are not configured")
        hints = self.pr_heuristics.infer(diff, branch_name, commit_subjects, user_context)
        prompt = self._pull_request_prompt(diff, hints, user_context, base_branch, commit_subjects)

        first = await self._request_pull_request(prompt)
        if not first.title:
            raise LLMError(EMPTY_RESPONSE_ERROR)
        validation = self.pr_validator.validate(first, hints.template)
        if validation.valid:
            return first
        if self.debug:
            print(
                "DEBUG: pr.invalid template={} errors='{}'".format(
                    hints.template, "; ".join(validation.errors)
                )
            )

        wants_default = hints.template == "grouped" and any(
            marker in error
            for error in validation.errors
            for marker in GROUPED_TEMPLATE_ERROR_MARKERS
        )
        if wants_default:
            template = "default"
            second_prompt = self._pull_request_prompt(
                diff, replace(hints, template=template), user_context, base_branch, commit_subjects
            )
        else:
            template = hints.template
            second_prompt = (
                f"{prompt}\n\nPrevious output:\n{first.title}\n\n{first.body}\n\n"
                "Violations:\n- " + "\n- ".join(validation.errors) + "\n\n"
                "Return a corrected title and description that follow the template exactly."
            )

        try:
            second = await self._request_pull_request(second_prompt)
        except LLMError as e:
            if self.debug:
                print(f"DEBUG: pr.retry_failed error='{e}'")
            return first
        if self.pr_validator.validate(second, template).valid:
            return second
        if self.debug:
            print("DEBUG: pr.fallback returning first attempt")
        return first

    def _pull_request_prompt(
        self,
        diff: ProcessedDiff,
        hints: PullRequestHints,
        user_context: str,
        base_branch: Optional[str],
        commit_subjects: Sequence[str],
    ) -> str:
        return self.prompt_builder.build_pull_request_prompt(
            diff,
            hints,
            context=user_context,
            base_branch=base_branch,
            commit_subjects=commit_subjects,
        )

    async def _request_pull_request(self, prompt: str) -> PullRequestMessage:
        completion = await self.llm_client.complete(
            [
                {"role": "system", "content": PULL_REQUEST_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            max_tokens=max(self.config.llm.max_tokens, PULL_REQUEST_MIN_TOKENS),
        )
        return parse_pull_request_message(completion.content)

    async def generate_branch_name(
        self, context: str, diff: Optional[ProcessedDiff] = None
    ) -> str:
        prompt = self.prompt_builder.build_branch_prompt(context, diff)
        completion = await self.llm_client.complete(
            [
                {"role": "system", "content": BRANCH_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            max_tokens=BRANCH_MAX_TOKENS,
        )
        name = normalize_branch_name(completion.content)
        if self.debug:
            print(f"DEBUG: branch.generated raw='{completion.content[:60]}' name='{name}'")
        return name
