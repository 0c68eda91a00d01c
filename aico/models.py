"""Value types passed between the aico pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple

# Status letters as reported by ``git diff --name-status``.
STATUS_NAMES = {
    "A": "Added",
    "M": "Modified",
    "D": "Deleted",
    "R": "Renamed",
    "C": "Copied",
}


@dataclass(frozen=True)
class NameStatusEntry:
    """One touched file from ``--name-status`` output."""

    status: str  # 'A' | 'M' | 'D' | 'R' | 'C'
    path: str
    old_path: Optional[str] = None

    def describe(self) -> str:
        if self.old_path and self.status in {"R", "C"}:
            return f"{self.status} {self.old_path} -> {self.path}"
        return f"{self.status} {self.path}"


@dataclass(frozen=True)
class NumStatEntry:
    """One touched file from ``--numstat`` output."""

    insertions: int
    deletions: int
    path: str
    old_path: Optional[str] = None

    @property
    def churn(self) -> int:
        return self.insertions + self.deletions


@dataclass(frozen=True)
class DiffStats:
    original_length: int = 0
    processed_length: int = 0
    files_changed: int = 0
    additions: int = 0
    deletions: int = 0
    was_summarized: bool = False

    @property
    def lines_changed(self) -> int:
        return self.additions + self.deletions


@dataclass(frozen=True)
class DiffSignals:
    name_status: Tuple[NameStatusEntry, ...] = ()
    num_stat: Tuple[NumStatEntry, ...] = ()
    top_files: Tuple[str, ...] = ()
    patch_snippets: Tuple[str, ...] = ()

    def paths(self) -> list[str]:
        """Return top files when known, else every name-status path."""
        if self.top_files:
            return list(self.top_files)
        return [entry.path for entry in self.name_status]


@dataclass(frozen=True)
class ProcessedDiff:
    """Bounded representation of a change-set, built once per generation."""

    summary: str
    stats: DiffStats = field(default_factory=DiffStats)
    signals: DiffSignals = field(default_factory=DiffSignals)
    is_merge: bool = False


@dataclass(frozen=True)
class CommitMessage:
    title: str
    body: Optional[str] = None

    def without_body(self) -> "CommitMessage":
        return CommitMessage(title=self.title)

    def format(self) -> str:
        """Render the message as commit text."""
        if self.body:
            return f"{self.title}\n\n{self.body}"
        return self.title


@dataclass(frozen=True)
class PullRequestMessage:
    title: str
    body: str = ""

    def format(self) -> str:
        return f"{self.title}\n\n{self.body}".rstrip()


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: Tuple[str, ...] = ()

    @classmethod
    def from_errors(cls, errors: list[str]) -> "ValidationResult":
        return cls(valid=not errors, errors=tuple(errors))
