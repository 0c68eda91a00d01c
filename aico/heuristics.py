"""Change classification and scope inference from diff signals."""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Sequence

from .models import ProcessedDiff

# Layers whose changes are internal plumbing rather than user-facing features.
INTERNAL_PREFIXES: tuple[str, ...] = (
    "src/services/",
    "src/processors/",
    "src/types/",
    "src/constants/",
)
USER_FACING_HINTS: tuple[str, ...] = ("src/cli.ts", "src/cli/", "src/cli.py")
INTERNAL_RATIO = 0.5

DOCS_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^README\.md$"),
    re.compile(r"^docs/"),
    re.compile(r"\.md$", re.IGNORECASE),
    re.compile(r"^CHANGELOG", re.IGNORECASE),
    re.compile(r"^HISTORY", re.IGNORECASE),
)

# Files that hold validation, prompt and diff-processing rules.
QUALITY_TUNING_FILES: frozenset[str] = frozenset(
    {
        "src/services/OpenAI.service.ts",
        "src/constants/openai.constants.ts",
        "src/processors/Diff.processor.ts",
        "src/services/Git.service.ts",
        "aico/validation.py",
        "aico/repair.py",
        "aico/prompts.py",
        "aico/diff.py",
    }
)
QUALITY_TUNING_VOCABULARY = re.compile(
    r"(validateCommitMessage|validate_commit_message|repairSubject|repair_subject"
    r"|truncateSubject|truncate_subject|scopeRules|scope_rules|templates|prompt"
    r"|banned|vague|refineDescription|refine_description)"
)

VAGUE_DESCRIPTION_WORDS: frozenset[str] = frozenset(
    {"handling", "logic", "process", "stuff", "various"}
)

FALLBACK_SCOPE_RULES: tuple[tuple[str, str], ...] = (
    ("translations", r"/translations/"),
    ("tests", r"/(__tests__|tests)/"),
    ("config", r"(config|\.config|tsconfig|package)\."),
    ("docs", r"/(docs|doc)/"),
    ("services", r"/services/"),
)


def is_docs_path(path: str) -> bool:
    return any(pattern.search(path) for pattern in DOCS_PATTERNS)


def is_vague_description(description: str) -> bool:
    """Return True when a description says nothing specific.

    Vague means empty, made up only of filler words, or three tokens or
    fewer with any filler word among them.
    """
    tokens = [token.lower() for token in description.split()]
    if not tokens:
        return True
    fillers = [token in VAGUE_DESCRIPTION_WORDS for token in tokens]
    if all(fillers):
        return True
    return len(tokens) <= 3 and any(fillers)


@dataclass(frozen=True)
class ChangeClassification:
    is_internal_change: bool = False
    is_docs_only: bool = False
    is_docs_touched: bool = False
    is_quality_tuning: bool = False
    docs_scope: Optional[str] = None
    docs_touched_list: tuple[str, ...] = ()


class CommitHeuristics:
    """Derives classification facts from a :class:`ProcessedDiff`."""

    def __init__(
        self,
        internal_prefixes: Sequence[str] = INTERNAL_PREFIXES,
        user_facing_hints: Sequence[str] = USER_FACING_HINTS,
        quality_tuning_files: Iterable[str] = QUALITY_TUNING_FILES,
    ) -> None:
        self.internal_prefixes = tuple(internal_prefixes)
        self.user_facing_hints = tuple(user_facing_hints)
        self.quality_tuning_files = frozenset(quality_tuning_files)

    def classify(self, diff: ProcessedDiff) -> ChangeClassification:
        docs_touched = self.docs_touched_list(diff)
        return ChangeClassification(
            is_internal_change=self.is_internal_tooling_change(diff),
            is_docs_only=self.is_docs_only_change(diff),
            is_docs_touched=bool(docs_touched),
            is_quality_tuning=self.is_quality_tuning_change(diff),
            docs_scope=self.docs_scope(diff),
            docs_touched_list=tuple(docs_touched),
        )

    @staticmethod
    def _name_status_paths(diff: ProcessedDiff) -> list[str]:
        return [entry.path for entry in diff.signals.name_status]

    def is_internal_tooling_change(self, diff: ProcessedDiff) -> bool:
        paths = diff.signals.paths()
        if not paths:
            return False
        if any(path.startswith(self.user_facing_hints) for path in paths):
            return False
        internal = sum(1 for path in paths if path.startswith(self.internal_prefixes))
        return internal / len(paths) >= INTERNAL_RATIO

    def is_docs_only_change(self, diff: ProcessedDiff) -> bool:
        paths = self._name_status_paths(diff)
        return bool(paths) and all(is_docs_path(path) for path in paths)

    def is_docs_touched(self, diff: ProcessedDiff) -> bool:
        return any(is_docs_path(path) for path in self._name_status_paths(diff))

    def docs_touched_list(self, diff: ProcessedDiff) -> list[str]:
        return [path for path in self._name_status_paths(diff) if is_docs_path(path)]

    def docs_scope(self, diff: ProcessedDiff) -> str:
        if "README.md" in self._name_status_paths(diff):
            return "readme"
        return "docs"

    def is_quality_tuning_change(self, diff: ProcessedDiff) -> bool:
        """Narrow check: a rule file is touched AND snippets name rule identifiers."""
        paths = self._name_status_paths(diff)
        if not any(path in self.quality_tuning_files for path in paths):
            return False
        snippets = "\n".join(diff.signals.patch_snippets)
        return bool(QUALITY_TUNING_VOCABULARY.search(snippets))

    def is_vague_description(self, description: str) -> bool:
        return is_vague_description(description)


@dataclass(frozen=True)
class ScopeRule:
    scope: str
    match: re.Pattern[str]


class ScopeInferrer:
    """Picks the scope whose rule matches the most paths."""

    def __init__(self, raw_rules: Optional[Iterable[Mapping[str, str]]] = None) -> None:
        self.rules = self._parse_rules(raw_rules or ())

    @staticmethod
    def fallback_rules() -> list[ScopeRule]:
        return [ScopeRule(scope, re.compile(match)) for scope, match in FALLBACK_SCOPE_RULES]

    def _parse_rules(self, raw_rules: Iterable[Mapping[str, str]]) -> list[ScopeRule]:
        parsed: list[ScopeRule] = []
        for rule in raw_rules:
            scope = str(rule.get("scope") or "").strip()
            match = str(rule.get("match") or "")
            # An empty pattern matches every path.
            if not scope or not match:
                continue
            try:
                parsed.append(ScopeRule(scope, re.compile(match)))
            except re.error:
                continue
        return parsed or self.fallback_rules()

    def infer(self, paths: Iterable[str]) -> Optional[str]:
        counts: Counter[str] = Counter()
        for path in paths:
            for rule in self.rules:
                if rule.match.search(path):
                    counts[rule.scope] += 1
        if not counts:
            return None
        return counts.most_common(1)[0][0]


# --------------------------------------------------------------------------
# Pull request heuristics
# --------------------------------------------------------------------------

PR_TYPES = ("fix", "feat", "refactor", "chore", "perf", "docs")
PR_TYPE_MATCH = re.compile(r"^(fix|feat|refactor|chore|perf|docs)(\(.+\))?:\s+", re.IGNORECASE)
DEFAULT_PR_SCOPE = "core"
BRANCH_TYPE_WORDS = frozenset(
    {"feat", "fix", "refactor", "chore", "perf", "docs", "feature", "bug", "hotfix"}
)
INFRA_GROUPS = frozenset(
    {
        "services", "service", "constants", "cli", "heuristics", "processors",
        "prompts", "types", "validation", "tests", "test", "docs", "doc",
        "readme", "config", "scripts", "dist", "build", "node_modules",
    }
)
INFRA_GROUP_PATTERN = re.compile(r"^(readme|changelog|license|package|tsconfig|config|cli|dist|build)")
MAX_GROUPINGS = 5

_TEST_PATH = re.compile(r"(test|tests|__tests__|spec)\b", re.IGNORECASE)
_UI_PATH = re.compile(r"(ui|views?|screens?|components?|styles?)", re.IGNORECASE)
_RISKY_PATH = re.compile(
    r"(auth|payment|billing|migration|schema|config|permissions|security)", re.IGNORECASE
)
_RISKY_SNIPPET = re.compile(r"(migrate|backfill|drop|alter|permission|token)", re.IGNORECASE)
_SUBTLE_CONTEXT = re.compile(r"(race|stale|timing|concurr|debounce|throttle)")

_CONTEXT_TYPE_RULES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("fix", re.compile(r"(fix|bug|crash|regression|prevent)")),
    ("perf", re.compile(r"(perf|performance|latency|faster|speed)")),
    ("docs", re.compile(r"(docs|readme|changelog)")),
    ("refactor", re.compile(r"(refactor|cleanup|restructure)")),
)


@dataclass(frozen=True)
class PullRequestHints:
    type: str
    scope: str
    template: str
    groupings: tuple[str, ...] = ()
    platform_hints: tuple[str, ...] = ()
    risk_level: str = "low"
    test_touched: bool = False
    ui_touched: bool = False
    behavior_summary: Optional[str] = None


def _area(path: str) -> Optional[str]:
    parts = [part for part in path.split("/") if part]
    if not parts:
        return None
    return parts[1] if parts[0] == "src" and len(parts) > 1 else parts[0]


class PullRequestHeuristics:
    """Infers type, scope, template and risk for a pull request."""

    def __init__(self, commit_heuristics: CommitHeuristics, scope_inferrer: ScopeInferrer) -> None:
        self.commit_heuristics = commit_heuristics
        self.scope_inferrer = scope_inferrer

    def infer(
        self,
        diff: ProcessedDiff,
        branch_name: str,
        commit_subjects: Sequence[str] = (),
        user_context: str = "",
    ) -> PullRequestHints:
        paths = [entry.path for entry in diff.signals.name_status]
        snippets = "\n".join(diff.signals.patch_snippets)
        text_context = " ".join([user_context or "", *commit_subjects]).lower()

        pr_type = self.infer_type(diff, commit_subjects, user_context)
        scope = self.infer_scope(branch_name, paths, commit_subjects)
        groupings = self.infer_groupings(paths)
        return PullRequestHints(
            type=pr_type,
            scope=scope,
            template=self.infer_template(diff, text_context, groupings),
            groupings=tuple(groupings),
            platform_hints=tuple(self.infer_platforms(paths)),
            risk_level=self.infer_risk_level(paths, snippets),
            test_touched=any(_TEST_PATH.search(path) for path in paths),
            ui_touched=any(_UI_PATH.search(path) for path in paths),
            behavior_summary=self.infer_behavior_summary(
                pr_type, scope, commit_subjects, user_context
            ),
        )

    def infer_type(
        self,
        diff: ProcessedDiff,
        commit_subjects: Sequence[str],
        user_context: str = "",
    ) -> str:
        counts: Counter[str] = Counter()
        for subject in commit_subjects:
            match = PR_TYPE_MATCH.match(subject)
            if match:
                counts[match.group(1).lower()] += 1
        if counts:
            return counts.most_common(1)[0][0]

        context = (user_context or "").lower()
        for pr_type, pattern in _CONTEXT_TYPE_RULES:
            if pattern.search(context):
                return pr_type

        if self.commit_heuristics.is_docs_only_change(diff):
            return "docs"
        if self._is_test_only(diff):
            return "chore"
        if self.commit_heuristics.is_internal_tooling_change(diff):
            return "refactor"
        if any(entry.status == "A" for entry in diff.signals.name_status):
            return "feat"
        return "chore"

    def infer_scope(
        self, branch_name: str, paths: Sequence[str], commit_subjects: Sequence[str]
    ) -> str:
        branch_scope = self.scope_from_branch(branch_name)
        if branch_scope:
            return branch_scope
        inferred = self.scope_inferrer.infer(paths or commit_subjects)
        if inferred:
            return inferred
        return self._top_area(paths) or DEFAULT_PR_SCOPE

    @staticmethod
    def scope_from_branch(branch_name: str) -> Optional[str]:
        cleaned = re.sub(r"^refs/heads/", "", branch_name or "").lower()
        parts = [part for part in re.split(r"[/_-]+", cleaned) if part]
        candidates = [part for part in parts if part not in BRANCH_TYPE_WORDS]
        if candidates and len(candidates[0]) >= 2:
            return re.sub(r"[^a-z0-9-]", "", candidates[0]) or None
        return None

    @staticmethod
    def _top_area(paths: Sequence[str]) -> Optional[str]:
        counts = Counter(area for area in (_area(path) for path in paths) if area)
        if not counts:
            return None
        return re.sub(r"[^a-z0-9-]", "", counts.most_common(1)[0][0]) or None

    @staticmethod
    def infer_groupings(paths: Sequence[str]) -> list[str]:
        counts: Counter[str] = Counter()
        for path in paths:
            area = _area(path)
            if not area:
                continue
            normalized = re.sub(r"[^a-z0-9-]", "", area.lower())
            if not normalized or normalized in INFRA_GROUPS or INFRA_GROUP_PATTERN.match(normalized):
                continue
            counts[normalized] += 1
        return [area for area, _count in counts.most_common(MAX_GROUPINGS)]

    @staticmethod
    def infer_template(diff: ProcessedDiff, context_text: str, groupings: Sequence[str]) -> str:
        is_large = diff.stats.files_changed >= 8 or diff.stats.lines_changed >= 200
        if _SUBTLE_CONTEXT.search(context_text):
            return "subtle-bug"
        if len(groupings) >= 2 and is_large:
            return "grouped"
        return "default"

    @staticmethod
    def infer_platforms(paths: Sequence[str]) -> list[str]:
        hints: list[str] = []
        for label, pattern in (("iOS", r"ios"), ("Android", r"android"), ("Web", r"web")):
            if any(re.search(pattern, path, re.IGNORECASE) for path in paths):
                hints.append(label)
        return hints

    @staticmethod
    def infer_risk_level(paths: Sequence[str], snippets: str) -> str:
        risky_path = any(_RISKY_PATH.search(path) for path in paths)
        risky_snippet = bool(_RISKY_SNIPPET.search(snippets))
        if risky_path and risky_snippet:
            return "high"
        if risky_path or risky_snippet:
            return "med"
        return "low"

    @staticmethod
    def infer_behavior_summary(
        pr_type: str, scope: str, commit_subjects: Sequence[str], user_context: str = ""
    ) -> Optional[str]:
        context = (user_context or "").strip()
        if context:
            return f"{pr_type.capitalize()} {scope} behavior: {context}."
        subject = next((line for line in commit_subjects if line.strip()), None)
        if subject:
            clean = PR_TYPE_MATCH.sub("", subject).strip()
            if clean:
                return f"{pr_type.capitalize()} {scope} behavior: {clean}."
        return None

    @staticmethod
    def _is_test_only(diff: ProcessedDiff) -> bool:
        paths = [entry.path for entry in diff.signals.name_status]
        return bool(paths) and all(_TEST_PATH.search(path) for path in paths)
