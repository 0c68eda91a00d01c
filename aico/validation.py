"""Commit and pull request message validation.

Validators never raise on bad messages. They return a
:class:`~aico.models.ValidationResult` whose error strings the orchestrator
inspects to choose between local repair and a second model call.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Sequence

from .models import CommitMessage, PullRequestMessage, ValidationResult

COMMIT_TYPES: tuple[str, ...] = (
    "feat", "fix", "docs", "style", "refactor", "test",
    "chore", "build", "ci", "perf", "revert",
)
_TYPES = "|".join(COMMIT_TYPES)

SUBJECT_PATTERN = re.compile(rf"^({_TYPES})(\([a-z0-9-]+\))?: .+$")

BANNED_SUBJECT_WORDS: tuple[str, ...] = (
    "update", "updates", "updated", "enhance", "enhanced",
    "improve", "improved", "misc", "changes",
)
BANNED_SUBJECT_PATTERN = re.compile(
    r"\b(" + "|".join(BANNED_SUBJECT_WORDS) + r")\b", re.IGNORECASE
)

VAGUE_SUBJECT_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(rf"^({_TYPES})(\([a-z0-9-]+\))?: {phrase}$", re.IGNORECASE)
    for phrase in ("changes", "minor changes", "various changes")
)

NARRATION_WORDS: tuple[str, ...] = (
    "update", "updated", "modify", "modified", "change", "changed",
    "refactor", "refactored", "adjust", "adjusted", "cleanup", "cleaned",
)
NARRATION_PATTERN = re.compile(
    r"\b(" + "|".join(NARRATION_WORDS) + r")\b", re.IGNORECASE
)

PATH_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"[A-Za-z0-9._-]+/[A-Za-z0-9._/-]+"),
    re.compile(r"[A-Za-z0-9._-]+\\[A-Za-z0-9._\\-]+"),
)
EXTENSION_PATTERN = re.compile(r"\b[\w-]+\.[a-z][a-z0-9]{1,4}\b", re.IGNORECASE)

MAX_BODY_LINES = 2

# Substrings that mark an error as a grammar or type-policy violation.
STRUCTURAL_ERROR_MARKERS: tuple[str, ...] = (
    "Conventional Commits format",
    "Use refactor/chore",
    "Use docs for documentation-only changes",
)


def contains_file_path_or_extension(text: str) -> bool:
    return any(p.search(text) for p in PATH_PATTERNS) or bool(
        EXTENSION_PATTERN.search(text)
    )


def split_validation_errors(errors: Iterable[str]) -> tuple[list[str], list[str]]:
    """Return ``(structural, style)`` errors."""
    structural: list[str] = []
    style: list[str] = []
    for error in errors:
        if any(marker in error for marker in STRUCTURAL_ERROR_MARKERS):
            structural.append(error)
        else:
            style.append(error)
    return structural, style


@dataclass(frozen=True)
class ValidationContext:
    max_title_length: int = 72
    include_body_mode: str = "auto"
    include_body_allowed: bool = False
    internal_change: bool = False
    docs_only: bool = False


class CommitValidator:
    """Checks commit messages against the Conventional Commits grammar."""

    def validate(self, message: CommitMessage, context: ValidationContext) -> ValidationResult:
        """Validate ``message`` and return every violation found.

        Args:
            message: Parsed commit message.
            context: Length budget, body policy and change classification.

        Returns:
            ValidationResult listing structural and style errors together.
        """
        errors: list[str] = []
        title = message.title.strip()

        if not SUBJECT_PATTERN.match(title):
            errors.append("Subject must follow Conventional Commits format")
        if len(title) > context.max_title_length:
            errors.append(f"Subject exceeds {context.max_title_length} characters")
        if contains_file_path_or_extension(title):
            errors.append("Subject must not include file paths or extensions")
        if BANNED_SUBJECT_PATTERN.search(title):
            errors.append("Subject contains banned filler words")
        if any(p.match(title) for p in VAGUE_SUBJECT_PATTERNS):
            errors.append("Subject is too vague")
        if context.internal_change and re.match(r"^feat(\(|:)", title):
            errors.append("Use refactor/chore for internal tooling changes (not feat)")
        if context.docs_only and not re.match(r"^docs(\(|:)", title):
            errors.append("Use docs for documentation-only changes")

        if message.body:
            errors.extend(self._body_errors(message.body, context))

        return ValidationResult.from_errors(errors)

    @staticmethod
    def _body_errors(body: str, context: ValidationContext) -> list[str]:
        errors: list[str] = []
        if context.include_body_mode == "never" or not context.include_body_allowed:
            errors.append("Body is not allowed for this commit")
        lines = [line.strip() for line in body.split("\n") if line.strip()]
        if len(lines) > MAX_BODY_LINES:
            errors.append(f"Body must be {MAX_BODY_LINES} bullets or fewer")
        if any(not line.startswith("- ") for line in lines):
            errors.append('Body bullets must start with "- "')
        if any(NARRATION_PATTERN.search(line) for line in lines):
            errors.append("Body notes must avoid narration words")
        return errors

    def is_valid_subject(self, subject: str, max_length: int) -> bool:
        """Return True when ``subject`` passes every subject-level rule."""
        if not subject or len(subject) > max_length:
            return False
        if not SUBJECT_PATTERN.match(subject):
            return False
        if contains_file_path_or_extension(subject):
            return False
        if BANNED_SUBJECT_PATTERN.search(subject):
            return False
        return not any(p.match(subject) for p in VAGUE_SUBJECT_PATTERNS)

    def split_errors(self, errors: Iterable[str]) -> tuple[list[str], list[str]]:
        return split_validation_errors(errors)


# --------------------------------------------------------------------------
# Pull requests
# --------------------------------------------------------------------------

PR_TEMPLATES = ("default", "grouped", "subtle-bug")
PR_TITLE_PATTERN = re.compile(
    r"^(fix|feat|refactor|chore|perf|docs)\([a-z0-9-]+\):\s+\S+", re.IGNORECASE
)
PR_FILE_PATH_PATTERN = re.compile(
    r"(src/|lib/|packages/|\.ts\b|\.tsx\b|\.js\b|\.jsx\b|\.json\b|\.md\b|\.py\b)"
)
FILEISH_HEADING_PATTERN = re.compile(
    r"(\.md\b|readme\b|services?\b|constants?\b|cli\b|heuristics?\b|processors?\b"
    r"|prompts?\b|types?\b|validation\b|tests?\b|config\b|scripts?\b|dist\b|build\b"
    r"|package\b|tsconfig\b|license\b)",
    re.IGNORECASE,
)
QA_GENERIC_PREFIX = re.compile(r"^(verified|ensured|checked|tested|confirmed)\b", re.IGNORECASE)
QA_SURFACE_PATTERN = re.compile(r"^[^:]{2,25}:\s+\S+")
QA_NOT_TESTED = "not tested (not run)"

DEFAULT_SECTIONS = frozenset({"summary", "changes", "qa focus", "notes", "screenshots"})
RESERVED_SECTIONS = frozenset({"summary", "qa focus", "notes", "screenshots"})
_SECTION_HEADING = re.compile(r"^###\s+(.+)$")


def parse_sections(body: str) -> dict[str, str]:
    """Split a markdown body on ``###`` headings keyed by lowercase title."""
    sections: dict[str, str] = {}
    current = None
    buffer: list[str] = []
    for line in body.split("\n"):
        match = _SECTION_HEADING.match(line)
        if match:
            if current is not None:
                sections[current] = "\n".join(buffer).strip()
            current = match.group(1).strip().lower()
            buffer = []
            continue
        buffer.append(line)
    if current is not None:
        sections[current] = "\n".join(buffer).strip()
    return sections


def extract_bullets(section: str) -> list[str]:
    bullets = []
    for line in section.split("\n"):
        line = line.strip()
        if line.startswith("- ") and line[2:].strip():
            bullets.append(line[2:].strip())
    return bullets


def _contains_pr_paths(lines: Sequence[str]) -> bool:
    return any(PR_FILE_PATH_PATTERN.search(line) for line in lines)


def is_fileish_heading(heading: str) -> bool:
    normalized = re.sub(r"[^a-z0-9]", "", heading.lower())
    return bool(
        FILEISH_HEADING_PATTERN.search(heading) or FILEISH_HEADING_PATTERN.search(normalized)
    )


class PullRequestValidator:
    """Checks pull request titles and bodies against a section template."""

    def validate(self, message: PullRequestMessage, template: str) -> ValidationResult:
        errors: list[str] = []
        if not PR_TITLE_PATTERN.match(message.title.strip()):
            errors.append('Title must match "<type>(<scope>): <outcome>" format')

        sections = parse_sections(message.body)
        qa_focus = sections.get("qa focus", "")
        if not sections.get("summary", "").strip():
            errors.append("Missing Summary section")
        if not qa_focus.strip():
            errors.append("Missing QA Focus section")

        if template == "default":
            errors.extend(self._default_errors(sections))
        elif template == "grouped":
            errors.extend(self._grouped_errors(sections))
        elif template == "subtle-bug":
            errors.extend(self._subtle_bug_errors(sections))

        errors.extend(self._qa_errors(qa_focus))
        return ValidationResult.from_errors(errors)

    @staticmethod
    def _default_errors(sections: dict[str, str]) -> list[str]:
        errors: list[str] = []
        extra = [key for key in sections if key not in DEFAULT_SECTIONS]
        if extra:
            errors.append(
                "Default template should not include grouped sections: " + ", ".join(extra)
            )
        changes = sections.get("changes", "")
        if not changes.strip():
            errors.append("Missing Changes section")
            return errors
        bullets = extract_bullets(changes)
        if len(bullets) < 2:
            errors.append("Changes section needs at least 2 bullets")
        if len(bullets) > 10:
            errors.append("Changes section has too many bullets")
        if _contains_pr_paths(bullets):
            errors.append("Changes section should not include file paths")
        return errors

    @staticmethod
    def _grouped_errors(sections: dict[str, str]) -> list[str]:
        errors: list[str] = []
        groups = [key for key in sections if key not in RESERVED_SECTIONS]
        if len(groups) < 2:
            errors.append("Grouped template needs at least 2 group sections")
        for key in groups:
            if is_fileish_heading(key):
                errors.append(f'Group heading "{key}" looks like file or infra')
            bullets = extract_bullets(sections.get(key, ""))
            if not bullets:
                errors.append(f'Group "{key}" should include bullets')
            if len(bullets) > 6:
                errors.append(f'Group "{key}" has too many bullets')
            if _contains_pr_paths(bullets):
                errors.append(f'Group "{key}" should not include file paths')
        return errors

    @staticmethod
    def _subtle_bug_errors(sections: dict[str, str]) -> list[str]:
        errors: list[str] = []
        root_cause = sections.get("root cause", "")
        fix = sections.get("fix", "")
        if not root_cause.strip():
            errors.append("Missing Root cause section")
        if not fix.strip():
            errors.append("Missing Fix section")
        root_bullets = extract_bullets(root_cause)
        fix_bullets = extract_bullets(fix)
        if len(root_bullets) > 3:
            errors.append("Root cause has too many bullets")
        if len(fix_bullets) > 3:
            errors.append("Fix has too many bullets")
        if _contains_pr_paths(root_bullets) or _contains_pr_paths(fix_bullets):
            errors.append("Root cause/Fix should not include file paths")
        return errors

    @staticmethod
    def _qa_errors(qa_focus: str) -> list[str]:
        errors: list[str] = []
        bullets = extract_bullets(qa_focus)
        not_tested = len(bullets) == 1 and bullets[0].lower() == QA_NOT_TESTED
        if len(bullets) < 2 and not not_tested:
            errors.append("QA Focus should include at least 2 bullets")
        if len(bullets) > 10:
            errors.append("QA Focus has too many bullets")
        if _contains_pr_paths(bullets):
            errors.append("QA Focus should not include file paths")
        if any(QA_GENERIC_PREFIX.match(bullet) for bullet in bullets):
            errors.append("QA Focus bullets should be executable, not generic")
        if not not_tested and not any(QA_SURFACE_PATTERN.match(b) for b in bullets):
            errors.append('QA Focus bullets should start with a surface like "CLI: ..."')
        return errors
