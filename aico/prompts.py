"""Prompt assembly for commit, branch and pull request generation."""

from __future__ import annotations

import re
from typing import Any, Optional, Sequence

from .config import Config
from .heuristics import CommitHeuristics, PullRequestHints, ScopeInferrer
from .models import NameStatusEntry, NumStatEntry, ProcessedDiff
from .validation import COMMIT_TYPES

COMMIT_SYSTEM_PROMPT = """You write git commit messages in Conventional Commits form.

Output plain text only: no markdown, no backticks, no quotes.
The first line is the subject: <type>(<scope>): <description>
- type is one of: feat, fix, docs, style, refactor, test, chore, build, ci, perf, revert
- scope is optional, lowercase, kebab-case
- description is imperative, specific and states what changed
- never name files, paths or extensions in the subject
- avoid filler words such as update, improve, enhance, misc or changes
- use feat only for new user-facing functionality; internal plumbing is refactor or chore
- use fix only when the diff shows a bug being fixed
If a body is allowed, leave one blank line and add at most 2 bullets starting with "- ".
Bullets state what changed, not that something was changed."""

PULL_REQUEST_SYSTEM_PROMPT = """You write pull request titles and descriptions.

The first line is the title: <type>(<scope>): <outcome>
- type is one of: fix, feat, refactor, chore, perf, docs
Then a blank line and a Markdown body using "###" headings and "- " bullets.
Always include "### Summary" and "### QA Focus".
Template default: add "### Changes" with 2 to 10 bullets.
Template grouped: one heading per product area (never a file, folder or code layer), 1 to 6 bullets each.
Template subtle-bug: add "### Root cause" and "### Fix" with at most 3 bullets each.
QA Focus bullets start with a surface such as "CLI: ..." and describe executable checks.
If nothing was tested, QA Focus is the single bullet "- Not tested (not run)".
Never mention file paths in bullets."""

BRANCH_SYSTEM_PROMPT = """You name git branches.

Reply with a single branch name and nothing else.
Format: <prefix>/<short-kebab-description>, where prefix is one of
feat, fix, refactor, chore, style, docs. Keep it under 40 characters,
lowercase, using only letters, digits, hyphens and one slash."""

DEFAULT_BRANCHES = frozenset({"main", "master", "develop"})
BRANCH_SCOPE_SKIP = frozenset({"feat", "fix", "chore", "docs", "style", "refactor", "test", "ci"})
MAX_STYLE_EXAMPLES = 3
MAX_SNIPPETS = 3
MAX_PR_SUBJECTS = 12
MAX_PR_NAME_STATUS = 12
MAX_BRANCH_NAME_STATUS = 10

_STRICT_EXAMPLE = re.compile(rf"^({'|'.join(COMMIT_TYPES)})(\(.+\))?: .+")
_LENIENT_EXAMPLE = re.compile(rf"^({'|'.join(COMMIT_TYPES)})[:\s].+")

_BRANCH_PREFIX_RULES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("fix/", re.compile(r"(fix|bug|crash|broken|regression)")),
    ("refactor/", re.compile(r"(refactor|cleanup|rename|restructure)")),
    ("docs/", re.compile(r"(docs|readme|changelog)")),
    ("style/", re.compile(r"(style|format|lint|eslint|prettier|black|ruff)")),
)


def format_name_status(entries: Sequence[NameStatusEntry], limit: Optional[int] = None) -> list[str]:
    shown = entries if limit is None else entries[:limit]
    lines = [f"- {entry.describe()}" for entry in shown]
    if limit is not None and len(entries) > limit:
        lines.append(f"- ... +{len(entries) - limit} more")
    return lines


def format_top_changes(top: Sequence[str], num_stat: Sequence[NumStatEntry]) -> list[str]:
    by_path = {entry.path: entry for entry in num_stat}
    lines = []
    for path in top:
        stats = by_path.get(path)
        if stats:
            lines.append(f"- {path} (+{stats.insertions}/-{stats.deletions})")
        else:
            lines.append(f"- {path}")
    return lines


def format_stats(diff: ProcessedDiff) -> list[str]:
    return [
        "Stats:",
        f"- files: {diff.stats.files_changed}",
        f"- insertions: {diff.stats.additions}",
        f"- deletions: {diff.stats.deletions}",
    ]


def is_style_example(subject: str) -> bool:
    return bool(_STRICT_EXAMPLE.match(subject) or _LENIENT_EXAMPLE.match(subject))


def branch_scope_hint(branch_name: str) -> Optional[str]:
    """Return the first non-type segment of a branch name, if long enough."""
    for part in re.split(r"[-_/]", branch_name):
        if part and part.lower() not in BRANCH_SCOPE_SKIP:
            return part.lower() if len(part) > 2 else None
    return None


def infer_branch_prefix(context: str) -> str:
    text = context.lower()
    for prefix, pattern in _BRANCH_PREFIX_RULES:
        if pattern.search(text):
            return prefix
    return "feat/"


class PromptBuilder:
    """Builds model prompts from diff signals, hints and repository context.

    Reads branch, history and merge details from ``git_repo`` but never
    calls the model.
    """

    def __init__(
        self,
        config: Config,
        heuristics: CommitHeuristics,
        scope_inferrer: ScopeInferrer,
        git_repo: Any,
        debug: bool = False,
    ) -> None:
        self.config = config
        self.heuristics = heuristics
        self.scope_inferrer = scope_inferrer
        self.git_repo = git_repo
        self.debug = debug

    def build_commit_prompt(
        self,
        diff: ProcessedDiff,
        user_context: str = "",
        include_body_allowed: bool = False,
        include_body_mode: str = "auto",
    ) -> str:
        """Return the user prompt for a commit message.

        Cheap structured facts come first, raw snippets last.
        """
        parts = ["Generate a conventional commit message for the changes below."]

        branch = self.git_repo.get_branch_name()
        if branch and branch not in DEFAULT_BRANCHES:
            hint = branch_scope_hint(branch)
            parts.append(f"Branch: {branch} (scope hint: {hint})" if hint else f"Branch: {branch}")

        if diff.is_merge:
            parts.append("This is a merge commit.")
            heads = self.git_repo.get_merge_heads()
            if heads.get("source") and heads.get("target"):
                parts.append(f"Merge: {heads['source']} → {heads['target']}")

        if user_context:
            parts.append("User context:")
            parts.append(user_context)

        if include_body_mode == "never":
            parts.append("Body is not allowed for this commit.")
        elif not include_body_allowed:
            parts.append("Return only the subject line.")

        parts.append(f"Max subject length: {self.config.commit.max_title_length} characters.")

        examples = self._style_examples()
        if examples:
            parts.append("Recent commits (style only):")
            parts.extend(f"- {subject}" for subject in examples)

        signals = diff.signals
        scope_hint = self.scope_inferrer.infer(signals.paths())
        if scope_hint:
            parts.append(f"Scope hint: {scope_hint}")

        classification = self.heuristics.classify(diff)
        if classification.is_docs_only:
            parts.append("Type hint: docs (documentation-only change)")
            parts.append(f"Scope hint: {classification.docs_scope}")
        elif classification.is_internal_change:
            parts.append("Type hint: refactor (internal tooling change)")

        if classification.is_docs_touched and not classification.is_docs_only:
            parts.append(f"Docs touched: {', '.join(classification.docs_touched_list[:3])}")

        if signals.name_status:
            parts.append("Changes (name-status):")
            parts.extend(format_name_status(signals.name_status))

        parts.extend(format_stats(diff))

        if signals.top_files:
            parts.append("Top changes:")
            parts.extend(format_top_changes(signals.top_files, signals.num_stat))

        parts.extend(self._diff_body(diff))
        return "\n".join(parts)

    def _style_examples(self) -> list[str]:
        subjects = self.git_repo.get_recent_commit_subjects(5)
        examples = [s for s in subjects if is_style_example(s)][:MAX_STYLE_EXAMPLES]
        if self.debug:
            print(
                "DEBUG: prompt.style_examples recent={} kept={}".format(
                    len(subjects), len(examples)
                )
            )
        return examples

    @staticmethod
    def _diff_body(diff: ProcessedDiff) -> list[str]:
        if diff.signals.patch_snippets:
            return ["Top diffs (snippets):", *diff.signals.patch_snippets[:MAX_SNIPPETS]]
        if diff.summary:
            return ["Summary:", diff.summary]
        return []

    @staticmethod
    def build_retry_prompt(base_prompt: str, previous_output: str, violations: Sequence[str]) -> str:
        """Append the rejected output and its violations to ``base_prompt``."""
        lines = [
            base_prompt,
            "",
            "Previous output:",
            previous_output.strip(),
            "Violations:",
            *(f"- {violation}" for violation in violations),
            "Return only the corrected commit message.",
        ]
        return "\n".join(lines)

    def build_branch_prompt(self, context: str, diff: Optional[ProcessedDiff] = None) -> str:
        parts = [
            "Generate a branch name based on the following context:",
            f"\nContext: {context}",
            f"\nPrefix hint: {infer_branch_prefix(context)}",
        ]
        if diff is not None:
            parts.append("\nChanges summary:")
            parts.append(self._branch_diff_summary(diff))
        return "\n".join(parts)

    @staticmethod
    def _branch_diff_summary(diff: ProcessedDiff) -> str:
        signals = diff.signals
        parts: list[str] = []
        if signals.name_status and not signals.top_files:
            parts.append("Name-status:")
            parts.extend(format_name_status(signals.name_status, MAX_BRANCH_NAME_STATUS))
        parts.extend(format_stats(diff))
        if signals.top_files:
            parts.append("Top files:")
            parts.extend(format_top_changes(signals.top_files, signals.num_stat))
        return "\n".join(parts)

    def build_pull_request_prompt(
        self,
        diff: ProcessedDiff,
        hints: PullRequestHints,
        context: str = "",
        base_branch: Optional[str] = None,
        commit_subjects: Sequence[str] = (),
    ) -> str:
        parts = [
            "Generate a pull request title and description for the branch changes below.",
            "Title format: <type>(<scope>): <outcome>.",
            "Use the shortest template that preserves clarity.",
            'Use Markdown headings with "###" and bullet lists.',
            "Group headings must be product/feature areas, not files or code layers.",
            'QA Focus bullets must start with a surface like "CLI: ..." or "UI: ..." '
            "and be executable checks.",
        ]
        branch = self.git_repo.get_branch_name()
        if branch:
            parts.append(f"Branch: {branch}")
        if base_branch:
            parts.append(f"Base: {base_branch}")
        if context:
            parts.append("User context:")
            parts.append(context)

        parts.append(f"Type hint: {hints.type}")
        parts.append(f"Scope hint: {hints.scope}")
        if hints.platform_hints:
            parts.append(f"Platform hints: {', '.join(hints.platform_hints)}")
        parts.append(f"Risk level: {hints.risk_level}")
        parts.append(f"Template: {hints.template} (do not change)")
        if hints.groupings:
            parts.append(f"Grouping areas: {', '.join(hints.groupings)}")
        if hints.test_touched:
            parts.append("Tests touched: yes")
        if hints.ui_touched:
            parts.append("UI touched: yes")
        if hints.behavior_summary:
            parts.append(f"Behavior: {hints.behavior_summary}")
        if commit_subjects:
            parts.append("Commit subjects (most recent first):")
            parts.extend(f"- {subject}" for subject in commit_subjects[:MAX_PR_SUBJECTS])

        signals = diff.signals
        parts.extend(format_stats(diff))
        if signals.top_files:
            parts.append("Top changes:")
            parts.extend(format_top_changes(signals.top_files, signals.num_stat))
        if signals.name_status:
            parts.append("Changes (name-status):")
            parts.extend(format_name_status(signals.name_status, MAX_PR_NAME_STATUS))

        parts.extend(self._diff_body(diff))
        return "\n".join(parts)
