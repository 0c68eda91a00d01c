"""Diff signal extraction for aico.

Turns a raw unified diff of any size into a bounded :class:`ProcessedDiff`:
name-status and numstat entries, a short list of high-churn files, a few
dense patch snippets, and a summary whose shape depends on how large the
filtered diff is.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence

from .exceptions import ValidationError
from .models import DiffSignals, DiffStats, NameStatusEntry, NumStatEntry, ProcessedDiff
from .noise import is_noisy, is_signal_path

_SECTION_SPLIT = re.compile(r"(?=^diff --git )", re.MULTILINE)
_SECTION_HEADER = re.compile(r"^diff --git a/(.*) b/(.*)$", re.MULTILINE)

TOP_FILES_LIMIT = 5
NAME_STATUS_FALLBACK_LIMIT = 3
MAX_HEADER_LINES = 6

# Added/removed lines that usually carry the intent of a hunk.
PRIORITY_LINE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern)
    for pattern in (
        # function and class definitions
        r"^[+-]\s*(?:export\s+)?(?:default\s+)?(?:async\s+)?(?:def|class|function|func|fn)\s+\w+",
        r"^[+-]\s*(?:export\s+)?(?:const|let)\s+\w+\s*=\s*(?:async\s*)?\(",
        # imports
        r"^[+-]\s*(?:import\s|from\s+\S+\s+import\s|use\s|#include\s)",
        r"^[+-].*\brequire\(",
        # JSX-like returns
        r"^[+-]\s*return\s*\(?\s*<",
        # type definitions
        r"^[+-]\s*(?:export\s+)?(?:interface|type|enum|struct|protocol)\s+\w+",
        # config blocks
        r"^[+-]\s*\[[\w.-]+\]\s*$",
        r"^[+-]\s*\"?[\w.-]+\"?\s*[:=]\s*[\[{]\s*$",
    )
)


@dataclass(frozen=True)
class TierThresholds:
    """Character limits for the summarisation tiers."""

    optimal: int
    extended: int
    large: int


FULL_MODEL_TIERS = TierThresholds(optimal=12000, extended=40000, large=120000)
MINI_MODEL_TIERS = TierThresholds(optimal=6000, extended=20000, large=60000)


def tier_thresholds(model: str) -> TierThresholds:
    return MINI_MODEL_TIERS if "mini" in (model or "").lower() else FULL_MODEL_TIERS


def select_tier(length: int, thresholds: TierThresholds) -> str:
    """Return ``optimal``, ``extended``, ``large`` or ``very_large``."""
    if length <= thresholds.optimal:
        return "optimal"
    if length <= thresholds.extended:
        return "extended"
    if length <= thresholds.large:
        return "large"
    return "very_large"


def split_sections(patch: str) -> list[tuple[str, str]]:
    """Split a unified diff into ``(path, content)`` per file."""
    sections: list[tuple[str, str]] = []
    for chunk in _SECTION_SPLIT.split(patch):
        if not chunk:
            continue
        match = _SECTION_HEADER.match(chunk)
        if not match:
            continue
        path = match.group(2) or match.group(1)
        sections.append((path, chunk.rstrip()))
    return sections


def filter_noisy(raw_diff: str) -> str:
    """Drop per-file sections whose path is noisy."""
    kept: list[str] = []
    for chunk in _SECTION_SPLIT.split(raw_diff):
        if not chunk:
            continue
        match = _SECTION_HEADER.match(chunk)
        if match and (is_noisy(match.group(1)) or is_noisy(match.group(2))):
            continue
        kept.append(chunk)
    return "".join(kept)


def top_files(
    num_stat: Sequence[NumStatEntry],
    name_status: Sequence[NameStatusEntry],
    limit: int = TOP_FILES_LIMIT,
) -> list[str]:
    """Return the highest-churn signal paths, capped at ``limit``.

    Falls back to name-status order (capped at 3) when numstat yields
    nothing usable.
    """
    selected: list[str] = []
    for entry in sorted(num_stat, key=lambda e: e.churn, reverse=True):
        if not is_signal_path(entry.path) or entry.path in selected:
            continue
        selected.append(entry.path)
        if len(selected) >= limit:
            return selected
    if selected:
        return selected

    fallback_limit = min(limit, NAME_STATUS_FALLBACK_LIMIT)
    for ns_entry in name_status:
        if not is_signal_path(ns_entry.path) or ns_entry.path in selected:
            continue
        selected.append(ns_entry.path)
        if len(selected) >= fallback_limit:
            break
    return selected


def _is_change_line(line: str) -> bool:
    return (line.startswith("+") and not line.startswith("+++")) or (
        line.startswith("-") and not line.startswith("---")
    )


def _split_hunks(content: str) -> tuple[list[str], list[list[str]]]:
    lines = content.split("\n")
    header: list[str] = []
    index = 0
    while index < len(lines) and not lines[index].startswith("@@"):
        header.append(lines[index])
        index += 1

    hunks: list[list[str]] = []
    current: list[str] = []
    for line in lines[index:]:
        if line.startswith("@@"):
            if current:
                hunks.append(current)
            current = [line]
        elif current:
            current.append(line)
    if current:
        hunks.append(current)
    return header, hunks


def _is_binary_section(content: str) -> bool:
    return "GIT binary patch" in content or "Binary files" in content


def extract_patch_snippets(
    patch: str,
    top: Optional[Iterable[str]] = None,
    max_hunks_per_file: int = 2,
    max_lines_per_hunk: int = 30,
    max_chars_total: int = 12000,
) -> list[str]:
    """Return the densest hunks of each selected file as prompt snippets.

    Args:
        patch: Unified diff text.
        top: Paths to consider. ``None`` means every file in the patch.
        max_hunks_per_file: Hunks kept per file, ranked by changed lines.
        max_lines_per_hunk: Lines kept per hunk after its ``@@`` header.
        max_chars_total: Budget across all snippets. Accumulation stops
            before the first snippet that would exceed it.

    Returns:
        Snippets in diff order, each starting with ``File: <path>``.
    """
    wanted = set(top) if top is not None else None
    snippets: list[str] = []
    total = 0

    for path, content in split_sections(filter_noisy(patch)):
        if wanted is not None and path not in wanted:
            continue
        if not is_signal_path(path) or _is_binary_section(content):
            continue

        header, hunks = _split_hunks(content)
        scored = sorted(
            hunks,
            key=lambda hunk: sum(1 for line in hunk if _is_change_line(line)),
            reverse=True,
        )[:max_hunks_per_file]
        if not scored:
            continue

        lines = [f"File: {path}", *header[:MAX_HEADER_LINES]]
        for hunk in scored:
            lines.extend(hunk[: max_lines_per_hunk + 1])
        snippet = "\n".join(lines).rstrip()

        if total + len(snippet) > max_chars_total:
            break
        snippets.append(snippet)
        total += len(snippet)

    return snippets


def extract_priority_hunks(
    patch: str,
    budget: int,
    context_lines: int = 3,
    order: Optional[Sequence[str]] = None,
) -> str:
    """Return the high-priority lines of each hunk with surrounding context.

    Priority lines are definitions, imports, JSX-like returns, type
    definitions and config blocks. Files listed in ``order`` come first.
    """
    sections = [
        (path, content)
        for path, content in split_sections(filter_noisy(patch))
        if is_signal_path(path) and not _is_binary_section(content)
    ]
    if order:
        rank = {path: idx for idx, path in enumerate(order)}
        sections.sort(key=lambda item: rank.get(item[0], len(rank)))

    blocks: list[str] = []
    total = 0
    for path, content in sections:
        _header, hunks = _split_hunks(content)
        picked: list[str] = []
        for hunk in hunks:
            marks = [
                idx
                for idx, line in enumerate(hunk)
                if idx and any(p.search(line) for p in PRIORITY_LINE_PATTERNS)
            ]
            if not marks:
                continue
            keep: set[int] = set()
            for idx in marks:
                keep.update(
                    range(max(1, idx - context_lines), min(len(hunk), idx + context_lines + 1))
                )
            picked.append(hunk[0])
            previous = None
            for idx in sorted(keep):
                if previous is not None and idx != previous + 1:
                    picked.append("...")
                picked.append(hunk[idx])
                previous = idx
        if not picked:
            continue
        block = "\n".join([f"File: {path}", *picked]).rstrip()
        if total + len(block) > budget:
            break
        blocks.append(block)
        total += len(block)

    return "\n\n".join(blocks)


def build_structured_summary(
    name_status: Sequence[NameStatusEntry],
    num_stat: Sequence[NumStatEntry],
    top: Sequence[str] = (),
) -> str:
    """Render a file list plus per-file counts, with no raw diff lines."""
    parts: list[str] = []
    if name_status:
        parts.append("Files:")
        for entry in name_status:
            if entry.status in {"R", "C"}:
                parts.append(
                    f"- {entry.status} {entry.old_path or 'unknown'} -> {entry.path}"
                )
            else:
                parts.append(f"- {entry.status} {entry.path}")

    top_list = list(top) or [
        entry.path
        for entry in sorted(num_stat, key=lambda e: e.churn, reverse=True)[
            :TOP_FILES_LIMIT
        ]
    ]
    if top_list:
        if parts:
            parts.append("")
        parts.append("Top changes:")
        by_path = {entry.path: entry for entry in num_stat}
        for path in top_list:
            stats = by_path.get(path)
            if stats:
                parts.append(f"- {path} (+{stats.insertions}/-{stats.deletions})")
            else:
                parts.append(f"- {path}")

    return "\n".join(parts).strip()


def fallback_name_status(raw_diff: str) -> list[NameStatusEntry]:
    """Derive Modified entries from ``diff --git`` headers."""
    return [
        NameStatusEntry(status="M", path=match.group(2) or match.group(1))
        for match in _SECTION_HEADER.finditer(raw_diff)
    ]


def count_line_changes(raw_diff: str) -> tuple[int, int]:
    additions = deletions = 0
    for line in raw_diff.split("\n"):
        if line.startswith("+") and not line.startswith("+++"):
            additions += 1
        elif line.startswith("-") and not line.startswith("---"):
            deletions += 1
    return additions, deletions


class DiffProcessor:
    """Builds a :class:`ProcessedDiff` sized for the target model."""

    def __init__(self, model: str = "gpt-4o", debug: bool = False) -> None:
        self.model = model
        self.thresholds = tier_thresholds(model)
        self.debug = debug

    def process(
        self,
        raw_diff: str,
        name_status: Sequence[NameStatusEntry] = (),
        num_stat: Sequence[NumStatEntry] = (),
        top: Optional[Sequence[str]] = None,
        patch_snippets: Sequence[str] = (),
        is_merge: bool = False,
    ) -> ProcessedDiff:
        """Compress ``raw_diff`` and the supplied signals.

        Missing name-status entries are derived from the diff headers and
        missing top files are computed from numstat. Stats count only
        non-noisy, non-binary paths.
        """
        filtered = filter_noisy(raw_diff)
        ns_entries = tuple(name_status) or tuple(fallback_name_status(filtered))
        top_list = tuple(top) if top is not None else tuple(top_files(num_stat, ns_entries))

        signal_stats = [entry for entry in num_stat if is_signal_path(entry.path)]
        if num_stat:
            additions = sum(entry.insertions for entry in signal_stats)
            deletions = sum(entry.deletions for entry in signal_stats)
        else:
            additions, deletions = count_line_changes(filtered)

        files_changed = sum(1 for entry in ns_entries if is_signal_path(entry.path))

        tier = select_tier(len(filtered), self.thresholds)
        structured = build_structured_summary(ns_entries, num_stat, top_list)
        if tier == "optimal":
            summary = filtered
        elif tier in {"extended", "large"}:
            budget = self.thresholds.optimal
            if tier == "large":
                budget //= 2
            key_hunks = extract_priority_hunks(filtered, budget, order=top_list)
            summary = structured
            if key_hunks:
                summary = f"{structured}\n\nKey hunks:\n{key_hunks}".strip()
        else:
            summary = structured
        summary = summary or structured or "Files: (none)"

        if self.debug:
            print(
                "DEBUG: diff.process tier={} original={} processed={} files={}".format(
                    tier, len(raw_diff), len(summary), files_changed
                )
            )

        return ProcessedDiff(
            summary=summary,
            stats=DiffStats(
                original_length=len(raw_diff),
                processed_length=len(summary),
                files_changed=files_changed,
                additions=additions,
                deletions=deletions,
                was_summarized=tier != "optimal",
            ),
            signals=DiffSignals(
                name_status=ns_entries,
                num_stat=tuple(num_stat),
                top_files=top_list,
                patch_snippets=tuple(patch_snippets),
            ),
            is_merge=is_merge,
        )


class DiffCollector:
    """Reads change-sets from a git reader and processes them."""

    def __init__(self, git_repo: Any, processor: DiffProcessor, debug: bool = False) -> None:
        self.git_repo = git_repo
        self.processor = processor
        self.debug = debug

    def _build(
        self,
        raw: str,
        name_status: list[NameStatusEntry],
        num_stat: list[NumStatEntry],
        patch_for: Any,
        is_merge: bool,
    ) -> ProcessedDiff:
        top = top_files(num_stat, name_status)
        patch = patch_for(top) if top else raw
        snippets = extract_patch_snippets(patch, top or None)
        if self.debug:
            print(
                "DEBUG: diff.collect top_files={} snippets={}".format(
                    top, len(snippets)
                )
            )
        return self.processor.process(
            raw,
            name_status=name_status,
            num_stat=num_stat,
            top=top,
            patch_snippets=snippets,
            is_merge=is_merge,
        )

    def collect_staged(self) -> ProcessedDiff:
        """Process the staged change-set.

        Raises:
            ValidationError: If nothing is staged.
        """
        raw = self.git_repo.get_staged_diff()
        if not raw.strip():
            raise ValidationError("No staged changes found")
        return self._build(
            raw,
            self.git_repo.get_staged_name_status(),
            self.git_repo.get_staged_num_stat(),
            self.git_repo.get_staged_patch_for_paths,
            self.git_repo.is_merging(),
        )

    def collect_branch(self, base: str) -> ProcessedDiff:
        """Process everything on the current branch since ``base``."""
        raw = self.git_repo.get_branch_diff(base)
        if not raw.strip():
            raise ValidationError(f"No changes found between {base} and HEAD")
        return self._build(
            raw,
            self.git_repo.get_branch_name_status(base),
            self.git_repo.get_branch_num_stat(base),
            lambda paths: self.git_repo.get_branch_patch_for_paths(base, paths),
            False,
        )
