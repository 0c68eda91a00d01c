"""Git operations for aico."""

from __future__ import annotations

import re
import subprocess
from pathlib import Path
from typing import Optional, Sequence

from .exceptions import GitError
from .models import NameStatusEntry, NumStatEntry

DEFAULT_BASE_CANDIDATES = (
    "refs/heads/main",
    "refs/heads/master",
    "refs/heads/develop",
    "refs/remotes/origin/main",
    "refs/remotes/origin/master",
    "refs/remotes/origin/develop",
)

_BRACE_RENAME = re.compile(r"^(.*)\{(.*) => (.*)\}(.*)$")


def find_git_repo_root(start_path: Optional[Path] = None) -> Optional[Path]:
    """Return the top-level Git repository directory for ``start_path``.

    Attempts ``git rev-parse --show-toplevel`` first so worktrees and
    submodules are handled correctly. Falls back to walking parent
    directories looking for a ``.git`` directory or file. Returns ``None``
    when no Git repository can be found starting from ``start_path``.
    """

    path = Path(start_path or Path.cwd()).expanduser().resolve(strict=False)
    if path.is_file():
        path = path.parent

    try:
        result = subprocess.run(
            ["git", "rev-parse", "--show-toplevel"],
            cwd=path,
            capture_output=True,
            text=True,
            check=True,
        )
        top = result.stdout.strip()
        if top:
            return Path(top)
    except (subprocess.CalledProcessError, FileNotFoundError):
        pass

    for candidate in (path, *path.parents):
        if (candidate / ".git").exists():
            return candidate

    return None


def parse_name_status(output: str) -> list[NameStatusEntry]:
    """Parse ``git diff --name-status`` output."""
    entries: list[NameStatusEntry] = []
    for line in output.split("\n"):
        line = line.strip()
        if not line:
            continue
        parts = [part for part in line.split("\t") if part]
        status = parts[0][0]
        if status in ("R", "C") and len(parts) >= 3:
            entries.append(NameStatusEntry(status=status, path=parts[2], old_path=parts[1]))
        elif len(parts) >= 2:
            entries.append(NameStatusEntry(status=status, path=parts[1]))
        else:
            fallback = line.split()
            if len(fallback) >= 2:
                entries.append(NameStatusEntry(status=status, path=fallback[1]))
    return entries


def parse_rename_path(value: str) -> tuple[str, Optional[str]]:
    """Expand ``src/{old => new}/f.py`` and ``old => new`` into (path, old_path)."""
    match = _BRACE_RENAME.match(value)
    if match:
        prefix, old, new, suffix = match.groups()
        old_path = re.sub(r"/{2,}", "/", f"{prefix}{old}{suffix}")
        path = re.sub(r"/{2,}", "/", f"{prefix}{new}{suffix}")
        return path, old_path
    if " => " in value:
        old_path, path = value.split(" => ", 1)
        return path.strip(), old_path.strip()
    return value, None


def _count(raw: str) -> int:
    # Binary files report "-" for both columns.
    return int(raw) if raw.isdigit() else 0


def parse_num_stat(output: str) -> list[NumStatEntry]:
    """Parse ``git diff --numstat`` output, including rename forms."""
    entries: list[NumStatEntry] = []
    for line in output.split("\n"):
        line = line.strip()
        if not line:
            continue
        parts = line.split("\t")
        if len(parts) < 3:
            continue
        insertions, deletions = _count(parts[0]), _count(parts[1])
        path_parts = parts[2:]
        if len(path_parts) >= 2:
            path, old_path = path_parts[1], path_parts[0]
        else:
            path, old_path = parse_rename_path(path_parts[0])
        entries.append(
            NumStatEntry(insertions=insertions, deletions=deletions, path=path, old_path=old_path)
        )
    return entries


class GitRepo:
    """Handles Git repository operations."""

    def __init__(self, repo_path: Optional[str] = None, debug: bool = False) -> None:
        self.repo_path = Path(repo_path or ".")
        self.debug = debug
        if not self._is_git_repo():
            raise GitError(f"Not a Git repository: {self.repo_path}")

    def _is_git_repo(self) -> bool:
        return self._probe(["rev-parse", "--git-dir"]) is not None

    def _run_git_command(self, args: list[str]) -> str:
        """Run a Git command and return its output."""
        if self.debug:
            print(f"DEBUG: git.run args='{' '.join(args)}'")
        try:
            result = subprocess.run(
                ["git"] + args,
                cwd=self.repo_path,
                capture_output=True,
                text=True,
                check=True,
            )
            return result.stdout.strip()
        except subprocess.CalledProcessError as e:
            cmd = " ".join(args)
            raise GitError(f"Git command failed: {cmd}\n{e.stderr}") from e
        except FileNotFoundError as exc:
            raise GitError("Git command not found. Please install Git.") from exc

    def _probe(self, args: list[str]) -> Optional[str]:
        """Run a query whose failure is an answer rather than an error.

        Returns stdout on a zero exit status and ``None`` otherwise.
        """
        try:
            result = subprocess.run(
                ["git"] + args,
                cwd=self.repo_path,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError:
            return None
        if result.returncode != 0:
            return None
        return result.stdout.strip()

    # Staged changes

    def get_staged_diff(self) -> str:
        return self._run_git_command(["diff", "--cached"])

    def get_staged_name_status(self) -> list[NameStatusEntry]:
        return parse_name_status(self._run_git_command(["diff", "--cached", "--name-status"]))

    def get_staged_num_stat(self) -> list[NumStatEntry]:
        return parse_num_stat(self._run_git_command(["diff", "--cached", "--numstat"]))

    def get_staged_patch_for_paths(self, paths: Sequence[str]) -> str:
        if not paths:
            return ""
        return self._run_git_command(["diff", "--cached", "--", *paths])

    def has_staged_changes(self) -> bool:
        return bool(self.get_staged_diff().strip())

    def has_working_changes(self) -> bool:
        """Check for unstaged or untracked changes."""
        return bool(self._run_git_command(["status", "--porcelain"]).strip())

    # Branch and history

    def get_branch_name(self) -> str:
        return self._probe(["rev-parse", "--abbrev-ref", "HEAD"]) or ""

    def get_recent_commit_subjects(self, count: int = 5) -> list[str]:
        output = self._probe(["log", f"-{count}", "--pretty=%s"])
        return [line.strip() for line in output.split("\n") if line.strip()] if output else []

    def get_commit_subjects_between(self, base: str, head: str = "HEAD") -> list[str]:
        """Return non-merge commit subjects in ``base..head``, newest first."""
        output = self._probe(["log", "--no-merges", "--pretty=%s", f"{base}..{head}"])
        return [line.strip() for line in output.split("\n") if line.strip()] if output else []

    def ref_exists(self, ref: str) -> bool:
        return self._probe(["show-ref", "--verify", "--quiet", ref]) is not None

    @staticmethod
    def _strip_ref_prefix(ref: str) -> str:
        return re.sub(r"^refs/(remotes|heads)/", "", ref)

    def get_default_base_branch(self) -> str:
        """Resolve the base branch for pull request diffs.

        Uses ``origin/HEAD`` when set, then the first existing of
        main/master/develop (local before remote), else ``main``.
        """
        remote_head = self._probe(["symbolic-ref", "--quiet", "refs/remotes/origin/HEAD"])
        if remote_head:
            return self._strip_ref_prefix(remote_head)
        for ref in DEFAULT_BASE_CANDIDATES:
            if self.ref_exists(ref):
                return self._strip_ref_prefix(ref)
        return "main"

    def get_branch_diff(self, base: str) -> str:
        return self._run_git_command(["diff", f"{base}...HEAD"])

    def get_branch_name_status(self, base: str) -> list[NameStatusEntry]:
        return parse_name_status(self._run_git_command(["diff", "--name-status", f"{base}...HEAD"]))

    def get_branch_num_stat(self, base: str) -> list[NumStatEntry]:
        return parse_num_stat(self._run_git_command(["diff", "--numstat", f"{base}...HEAD"]))

    def get_branch_patch_for_paths(self, base: str, paths: Sequence[str]) -> str:
        if not paths:
            return ""
        return self._run_git_command(["diff", f"{base}...HEAD", "--", *paths])

    # Merges

    def is_merging(self) -> bool:
        """True while a merge is in progress (MERGE_HEAD exists)."""
        return self._probe(["rev-parse", "--verify", "MERGE_HEAD"]) is not None

    def get_merge_heads(self) -> dict[str, str]:
        """Return ``source``/``target`` branch names of an in-progress merge.

        Keys are omitted when they cannot be resolved.
        """
        heads: dict[str, str] = {}
        target = self.get_branch_name()
        if target:
            heads["target"] = target
        merge_head = self._probe(["rev-parse", "--verify", "MERGE_HEAD"])
        if not merge_head:
            return heads
        source = self._probe(["name-rev", "--name-only", "--exclude=tags/*", merge_head])
        if source and source != "undefined":
            heads["source"] = source.replace("remotes/origin/", "")
        return heads

    # Writes

    def stage_all(self) -> None:
        """Stage all changes (including new and deleted files)."""
        self._run_git_command(["add", "-A"])

    def commit(self, message: str) -> None:
        """Create a commit with the given message."""
        self._run_git_command(["commit", "-m", message])

    def create_branch(self, name: str) -> None:
        """Create ``name`` from HEAD and switch to it."""
        self._run_git_command(["checkout", "-b", name])
