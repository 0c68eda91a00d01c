"""Core workflow logic for aico."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from .commit import CommitGenerator
from .config import Config
from .diff import DiffCollector, DiffProcessor
from .exceptions import ValidationError
from .git import GitRepo
from .heuristics import CommitHeuristics, PullRequestHeuristics, ScopeInferrer
from .llm import LLMClient
from .models import CommitMessage, ProcessedDiff, PullRequestMessage
from .prompts import PromptBuilder
from .repair import SubjectRepairer
from .validation import CommitValidator, PullRequestValidator


@dataclass
class CommitResult:
    """Result of a commit operation."""

    message: CommitMessage
    committed: bool = False
    merge: bool = False


@dataclass
class PullRequestResult:
    message: PullRequestMessage
    base_branch: str
    branch_name: str


class AicoWorkflow:
    """End-to-end commit, branch and pull request flows.

    All components are built here from one ``Config`` and passed to each
    other explicitly. Tests can inject a fake ``git_repo`` or ``llm_client``.
    """

    def __init__(
        self,
        config: Config,
        git_repo: Optional[Any] = None,
        llm_client: Optional[Any] = None,
        debug: Optional[bool] = None,
    ) -> None:
        self.config = config
        self.debug = config.debug if debug is None else debug
        self.git_repo = git_repo or GitRepo(config.repo_path, debug=self.debug)
        self.llm_client = llm_client or LLMClient(config, debug=self.debug)

        self.heuristics = CommitHeuristics()
        self.scope_inferrer = ScopeInferrer(config.commit.scope_rules)
        self.validator = CommitValidator()
        self.repairer = SubjectRepairer(
            config.commit,
            self.heuristics,
            self.scope_inferrer,
            self.validator,
            debug=self.debug,
        )
        self.prompt_builder = PromptBuilder(
            config,
            self.heuristics,
            self.scope_inferrer,
            self.git_repo,
            debug=self.debug,
        )
        self.diff_collector = DiffCollector(
            self.git_repo,
            DiffProcessor(config.llm.model, debug=self.debug),
            debug=self.debug,
        )
        self.generator = CommitGenerator(
            config,
            self.llm_client,
            self.prompt_builder,
            self.validator,
            self.repairer,
            self.heuristics,
            pr_validator=PullRequestValidator(),
            pr_heuristics=PullRequestHeuristics(self.heuristics, self.scope_inferrer),
            debug=self.debug,
        )

    def prepare_staged_diff(self, auto_stage: bool = True) -> ProcessedDiff:
        """Return the processed staged diff, staging everything if allowed.

        Raises:
            ValidationError: if there is nothing to commit, or only
                unstaged changes while ``auto_stage`` is off.
        """
        if not self.git_repo.has_staged_changes():
            if not self.git_repo.has_working_changes():
                raise ValidationError("No changes detected")
            if not auto_stage:
                raise ValidationError(
                    "No staged changes found. Stage files or drop --no-auto-stage."
                )
            if self.debug:
                print("DEBUG: workflow.stage_all reason=nothing_staged")
            self.git_repo.stage_all()
        return self.diff_collector.collect_staged()

    def build_merge_message(self) -> CommitMessage:
        heads = self.git_repo.get_merge_heads()
        source = heads.get("source") or "unknown"
        target = heads.get("target") or self.git_repo.get_branch_name() or "HEAD"
        return CommitMessage(title=f"merge: {source} into {target}")

    async def generate_commit(
        self,
        context: str = "",
        auto_stage: bool = True,
        merge_message: bool = False,
    ) -> CommitResult:
        diff = self.prepare_staged_diff(auto_stage)
        if merge_message:
            if not diff.is_merge:
                raise ValidationError("No merge in progress")
            return CommitResult(message=self.build_merge_message(), merge=True)
        message = await self.generator.generate_commit_message(diff, context)
        return CommitResult(message=message, merge=diff.is_merge)

    def commit(self, result: CommitResult) -> CommitResult:
        self.git_repo.commit(result.message.format())
        result.committed = True
        return result

    async def run_commit(
        self,
        context: str = "",
        auto_stage: bool = True,
        dry_run: bool = False,
        merge_message: bool = False,
    ) -> CommitResult:
        """Generate a commit message and, unless ``dry_run``, commit with it."""
        result = await self.generate_commit(context, auto_stage, merge_message)
        if dry_run:
            return result
        return self.commit(result)

    async def run_branch(
        self, context: str, create: bool = False, with_diff: bool = False
    ) -> str:
        """Generate a branch name from ``context`` and optionally check it out."""
        if not context.strip():
            raise ValidationError("Branch context must not be empty")
        diff = None
        if with_diff and self.git_repo.has_staged_changes():
            diff = self.diff_collector.collect_staged()
        name = await self.generator.generate_branch_name(context, diff)
        if create:
            self.git_repo.create_branch(name)
        return name

    async def run_pr(self, base: Optional[str] = None, context: str = "") -> PullRequestResult:
        base_branch = base or self.git_repo.get_default_base_branch()
        diff = self.diff_collector.collect_branch(base_branch)
        branch_name = self.git_repo.get_branch_name()
        subjects = self.git_repo.get_commit_subjects_between(base_branch)
        if self.debug:
            print(
                "DEBUG: workflow.pr base={} branch={} commits={}".format(
                    base_branch, branch_name, len(subjects)
                )
            )
        message = await self.generator.generate_pull_request(
            diff,
            branch_name=branch_name,
            base_branch=base_branch,
            commit_subjects=subjects,
            user_context=context,
        )
        return PullRequestResult(message=message, base_branch=base_branch, branch_name=branch_name)

    async def aclose(self) -> None:
        close = getattr(self.llm_client, "aclose", None)
        if close is not None:
            await close()
