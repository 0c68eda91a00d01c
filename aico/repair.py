"""Deterministic, model-free repair of commit subjects."""

from __future__ import annotations

import re
from typing import Optional

from .config import CommitConfig
from .heuristics import ChangeClassification, CommitHeuristics, ScopeInferrer
from .models import CommitMessage, ProcessedDiff
from .validation import (
    BANNED_SUBJECT_PATTERN,
    COMMIT_TYPES,
    EXTENSION_PATTERN,
    PATH_PATTERNS,
    VAGUE_SUBJECT_PATTERNS,
    CommitValidator,
    ValidationContext,
)

SUBJECT_PARSE_PATTERN = re.compile(
    r"^(" + "|".join(COMMIT_TYPES) + r")(\([a-z0-9-]+\))?: (.+)$"
)

FALLBACK_DESCRIPTION = "align commit flow"
FALLBACK_SUBJECT = "chore: align commit flow"
DOCS_TOUCHED_DESCRIPTION = "align docs with code"
DOCS_FALLBACK_DESCRIPTION = "refresh documentation"

TRAILING_STOP_WORDS = frozenset(
    {
        "and", "or", "with", "for", "to", "in", "on", "at", "from", "into", "by",
        "within", "inside",
    }
)
_TRAILING_PUNCTUATION = re.compile(r"[\s\-:,.→]+$")

PREFERRED_VERBS: tuple[str, ...] = (
    "refine", "tighten", "harden", "clarify", "standardize",
    "rename", "remove", "support", "detect", "prevent",
)
# Leading verbs rewritten for internal and quality-tuning changes.
DISCOURAGED_VERB_REWRITES: dict[str, str] = {
    "implement": "support",
    "adjust": "refine",
    "handle": "support",
    "process": "standardize",
    "manage": "standardize",
}
# Whole-phrase rewrites, applied before any verb or noun swap.
PHRASE_REWRITES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\badjust\s+(.+?)\s+(?:behaviou?r|parameters?)\b", re.IGNORECASE), r"refine \1"),
    (re.compile(r"\badd\s+(.+?)\s+logic\b", re.IGNORECASE), r"add \1"),
    (re.compile(r"\badd\s+(.+?)\s+handling\b", re.IGNORECASE), r"support \1"),
)
VERB_REWRITES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\badjust\b", re.IGNORECASE), "refine"),
    (re.compile(r"\btweak\b", re.IGNORECASE), "refine"),
)
NOUN_REWRITES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\bvalidation process\b", re.IGNORECASE), "validation"),
    (re.compile(r"\bconfiguration handling\b", re.IGNORECASE), "config support"),
    (re.compile(r"\bhandling\b", re.IGNORECASE), "support"),
)
# Internal changes only.
INTERNAL_NOUN_REWRITES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\blogic\b", re.IGNORECASE), "validation"),
)
FILLER_NOUNS = re.compile(r"\b(parameters?|process|behaviou?r)\b", re.IGNORECASE)

_REPLACE_PHRASE = re.compile(r"^replace\s+(.+?)\s+with\s+(.+)$", re.IGNORECASE)
_RENAME_PHRASE = re.compile(r"^rename\s+(.+?)\s+to\s+(.+)$", re.IGNORECASE)
_RENAME_ARROW_PHRASE = re.compile(r"^rename\s+(.+?)\s+→\s+(.+)$", re.IGNORECASE)
_ARROW_PHRASE = re.compile(r"^(?:rename\s+)?(.+?)\s*(?:->|→)\s*(.+)$", re.IGNORECASE)

_TRANSLATIONS_PATH = re.compile(r"(^|/)translations/")
_CONSOLE_CALL = re.compile(r"console\.|\bprint\(")
_LOGGER_CALL = re.compile(r"AppLogger|LoggerService|\blogger\.|\blogging\.")


def normalize_subject(candidate: str) -> str:
    """Return the first line with whitespace collapsed."""
    first = candidate.split("\n", 1)[0] if candidate else ""
    return re.sub(r"\s+", " ", first).strip()


def strip_file_paths(text: str) -> str:
    for pattern in PATH_PATTERNS:
        text = pattern.sub("", text)
    return EXTENSION_PATTERN.sub("", text)


def _collapse(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def trim_trailing(text: str) -> str:
    """Drop trailing punctuation and dangling stop words, keeping one word."""
    words = _TRAILING_PUNCTUATION.sub("", text).split()
    while len(words) > 1 and words[-1].lower() in TRAILING_STOP_WORDS:
        words.pop()
        words = _TRAILING_PUNCTUATION.sub("", " ".join(words)).split()
    return " ".join(words)


def _fit_words(text: str, allowed: int) -> str:
    fitted = ""
    for word in text.split():
        candidate = f"{fitted} {word}" if fitted else word
        if len(candidate) > allowed:
            break
        fitted = candidate
    return fitted


def truncate_subject_to_max(subject: str, max_length: int) -> str:
    """Shorten ``subject`` to ``max_length`` at a word boundary.

    The ``type(scope): `` prefix is preserved, trailing punctuation and
    stop words are dropped, and a generic description is substituted when
    no whole word of the original fits.
    """
    if len(subject) <= max_length:
        return subject
    match = SUBJECT_PARSE_PATTERN.match(subject)
    if not match:
        return subject[:max_length].strip()

    commit_type, scope, description = match.group(1), match.group(2) or "", match.group(3)
    prefix = f"{commit_type}{scope}: "
    allowed = max_length - len(prefix)
    if allowed <= 0:
        return f"{commit_type}: {FALLBACK_DESCRIPTION}"[:max_length].strip()

    cleaned = trim_trailing(_fit_words(description, allowed))
    if not cleaned:
        cleaned = _fit_words(FALLBACK_DESCRIPTION, allowed) or FALLBACK_DESCRIPTION[:allowed]
    return f"{prefix}{cleaned}".strip()


def sanitize_scope(scope: Optional[str]) -> str:
    cleaned = re.sub(r"[^a-z0-9-]+", "-", (scope or "").lower()).strip("-")
    return re.sub(r"-{2,}", "-", cleaned)


class SubjectRepairer:
    """Repairs near-miss subjects and synthesises guaranteed-valid fallbacks."""

    def __init__(
        self,
        config: CommitConfig,
        heuristics: CommitHeuristics,
        scope_inferrer: ScopeInferrer,
        validator: CommitValidator,
        debug: bool = False,
    ) -> None:
        self.config = config
        self.heuristics = heuristics
        self.scope_inferrer = scope_inferrer
        self.validator = validator
        self.debug = debug

    @property
    def max_length(self) -> int:
        return self.config.max_title_length

    def repair(self, diff: ProcessedDiff, candidate: str) -> Optional[str]:
        """Return a valid subject derived from ``candidate``, or ``None``.

        Only subjects that already parse as ``type(scope)?: description``
        are repaired. Applying ``repair`` to its own output returns the
        same subject.
        """
        match = SUBJECT_PARSE_PATTERN.match(normalize_subject(candidate))
        if not match:
            return None

        classification = self.heuristics.classify(diff)
        commit_type, scope = match.group(1), match.group(2) or ""
        if classification.is_docs_only:
            commit_type, scope = "docs", f"({classification.docs_scope or 'docs'})"
        elif classification.is_internal_change and commit_type == "feat":
            commit_type = "refactor"

        description = strip_file_paths(match.group(3))
        description = BANNED_SUBJECT_PATTERN.sub("", description)
        description = self.normalize_rename(description)
        description = trim_trailing(_collapse(description))

        if (
            not description
            or self._is_vague(f"{commit_type}{scope}: {description}")
            or self.heuristics.is_vague_description(description)
        ):
            template = self._fitted_template(diff, classification)
            if template:
                return template
            description = self._fallback_description(classification)

        prefix = f"{commit_type}{scope}: "
        subject = self._compose(prefix, description, classification)
        # Truncation and refinement can leave only filler words behind.
        if self.heuristics.is_vague_description(subject[len(prefix):]):
            subject = self._compose(
                prefix, self._fallback_description(classification), classification
            )

        if self.debug:
            print(f"DEBUG: repair.subject candidate='{candidate[:80]}' result='{subject}'")
        if not self.validator.is_valid_subject(subject, self.max_length):
            return None
        return subject

    def _compose(
        self, prefix: str, description: str, classification: ChangeClassification
    ) -> str:
        description = self.refine_description(description, classification)
        description = self.build_rename_description(description, len(prefix))
        return truncate_subject_to_max(f"{prefix}{description}", self.max_length)

    @staticmethod
    def _fallback_description(classification: ChangeClassification) -> str:
        if classification.is_docs_touched and not classification.is_docs_only:
            return DOCS_TOUCHED_DESCRIPTION
        return FALLBACK_DESCRIPTION

    def repair_docs(self, diff: ProcessedDiff, candidate: str) -> Optional[str]:
        """Force ``docs(<scope>)`` for documentation-only changes."""
        if not self.heuristics.is_docs_only_change(diff):
            return None
        match = SUBJECT_PARSE_PATTERN.match(normalize_subject(candidate))
        description = match.group(3) if match else DOCS_FALLBACK_DESCRIPTION
        scope = self.heuristics.docs_scope(diff)
        subject = truncate_subject_to_max(f"docs({scope}): {description}", self.max_length)
        if not self.validator.is_valid_subject(subject, self.max_length):
            return None
        return subject

    def _acceptable(self, subject: str, classification: ChangeClassification) -> bool:
        context = ValidationContext(
            max_title_length=self.max_length,
            internal_change=classification.is_internal_change,
            docs_only=classification.is_docs_only,
        )
        return bool(subject) and self.validator.validate(
            CommitMessage(title=subject), context
        ).valid

    def _fitted_template(
        self, diff: ProcessedDiff, classification: ChangeClassification
    ) -> Optional[str]:
        template = self.behavior_template_subject(diff)
        if not template:
            return None
        subject = truncate_subject_to_max(template, self.max_length)
        if not self._acceptable(subject, classification):
            return None
        return subject

    def build_fallback(self, diff: ProcessedDiff, candidate: str = "") -> str:
        """Return a subject that always passes validation for ``diff``.

        Tries, in order: the candidate, the truncated candidate, a
        scope-hinted ``refactor``/``chore`` subject, and the literal
        ``chore: align commit flow``.
        """
        classification = self.heuristics.classify(diff)

        def acceptable(subject: str) -> bool:
            return self._acceptable(subject, classification)

        normalized = normalize_subject(candidate)
        for subject in (normalized, truncate_subject_to_max(normalized, self.max_length)):
            if acceptable(subject):
                return subject

        if classification.is_docs_only:
            docs = truncate_subject_to_max(
                f"docs({classification.docs_scope or 'docs'}): {DOCS_FALLBACK_DESCRIPTION}",
                self.max_length,
            )
            if acceptable(docs):
                return docs

        scope_hint = sanitize_scope(self.scope_inferrer.infer(diff.signals.paths()))
        scoped = (
            f"refactor({scope_hint}): {FALLBACK_DESCRIPTION}"
            if scope_hint
            else f"chore: {FALLBACK_DESCRIPTION}"
        )
        for subject in (
            truncate_subject_to_max(scoped, self.max_length),
            truncate_subject_to_max(FALLBACK_SUBJECT, self.max_length),
        ):
            if acceptable(subject):
                return subject
        return FALLBACK_SUBJECT

    @staticmethod
    def _is_vague(subject: str) -> bool:
        return any(pattern.match(subject) for pattern in VAGUE_SUBJECT_PATTERNS)

    @staticmethod
    def normalize_rename(description: str) -> str:
        """Collapse replace/rename/arrow phrasing to ``rename A to B``.

        ``rename A → B`` is the shortened form produced when the full form
        does not fit, so it is left as is.
        """
        normalized = _collapse(description)
        if _RENAME_ARROW_PHRASE.match(normalized):
            return normalized
        for pattern in (_REPLACE_PHRASE, _RENAME_PHRASE, _ARROW_PHRASE):
            match = pattern.match(normalized)
            if match:
                return f"rename {match.group(1)} to {match.group(2)}"
        return description

    def build_rename_description(self, description: str, prefix_length: int) -> str:
        """Fit a rename into the budget: full form, arrow form, then short names.

        A description already in arrow form only considers arrow forms, so
        a second pass picks the same option as the first.
        """
        arrow_match = _RENAME_ARROW_PHRASE.match(description)
        match = arrow_match or _RENAME_PHRASE.match(description)
        if not match:
            return description
        source = _collapse(strip_file_paths(match.group(1)))
        target = _collapse(strip_file_paths(match.group(2)))
        if not source or not target:
            return description

        short_source, short_target = self._shorten(source), self._shorten(target)
        arrow_options = (
            f"rename {source} → {target}",
            f"rename {short_source} → {short_target}",
        )
        if arrow_match:
            options = arrow_options
        else:
            options = (
                f"rename {source} to {target}",
                arrow_options[0],
                f"rename {short_source} to {short_target}",
                arrow_options[1],
            )
        for option in options:
            if prefix_length + len(option) <= self.max_length:
                return option
        return arrow_options[0]

    @staticmethod
    def _shorten(value: str) -> str:
        stripped = re.sub(r"^\W+", "", re.sub(r"^enable", "", value, flags=re.IGNORECASE))
        return stripped.strip() or value

    def refine_description(
        self, description: str, classification: ChangeClassification
    ) -> str:
        """Rewrite weak phrasing, swap weak leading verbs and drop filler nouns."""
        for pattern, replacement in PHRASE_REWRITES:
            description = pattern.sub(replacement, description)

        words = description.split()
        if (
            words
            and (classification.is_internal_change or classification.is_quality_tuning)
            and words[0].lower() in DISCOURAGED_VERB_REWRITES
        ):
            words[0] = DISCOURAGED_VERB_REWRITES[words[0].lower()]
        description = " ".join(words)

        rewrites = VERB_REWRITES + NOUN_REWRITES
        if classification.is_internal_change:
            rewrites += INTERNAL_NOUN_REWRITES
        for pattern, replacement in rewrites:
            description = pattern.sub(replacement, description)
        words = description.split()
        refined = " ".join(words)

        # The leading verb stays; filler nouns are only dropped after it.
        if len(words) > 1:
            rest = _collapse(FILLER_NOUNS.sub("", " ".join(words[1:])))
            if rest:
                refined = f"{words[0]} {rest}"
        return trim_trailing(refined)

    def behavior_template_subject(self, diff: ProcessedDiff) -> Optional[str]:
        """Canned subjects for well-known change shapes, when enabled."""
        if not self.config.enable_behavior_templates:
            return None
        paths = diff.signals.paths()
        snippets = "\n".join(diff.signals.patch_snippets)

        if paths and all(_TRANSLATIONS_PATH.search(path) for path in paths):
            return "feat(translations): add new copy strings"
        if (
            0 < len(paths) <= 3
            and _CONSOLE_CALL.search(snippets)
            and _LOGGER_CALL.search(snippets)
        ):
            return "chore(logging): standardize logging"
        return None
