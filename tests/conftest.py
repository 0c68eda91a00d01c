from collections.abc import Callable, Generator
from pathlib import Path
from typing import Optional

import pytest

from aico.models import DiffSignals, DiffStats, NameStatusEntry, NumStatEntry, ProcessedDiff

_AICO_ENV = (
    "AICO_PROVIDER",
    "AICO_MODEL",
    "AICO_MAX_TITLE_LENGTH",
    "AICO_INCLUDE_BODY",
    "AICO_DEBUG",
    "AICO_LLM_REQUEST_TIMEOUT",
)


@pytest.fixture(autouse=True)
def isolated_env(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> Generator[None, None, None]:
    # Fake key for the default provider; no persisted config leaks in.
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    for name in _AICO_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("AICO_CONFIG_HOME", str(tmp_path / ".aico"))
    yield


def build_diff(
    paths: tuple[str, ...] = (),
    num_stat: Optional[dict[str, tuple[int, int]]] = None,
    snippets: tuple[str, ...] = (),
    statuses: Optional[dict[str, str]] = None,
    top: Optional[tuple[str, ...]] = None,
    summary: str = "",
    is_merge: bool = False,
) -> ProcessedDiff:
    num_stat = num_stat or {}
    statuses = statuses or {}
    name_status = tuple(
        NameStatusEntry(status=statuses.get(path, "M"), path=path) for path in paths
    )
    num = tuple(
        NumStatEntry(insertions=ins, deletions=dels, path=path)
        for path, (ins, dels) in num_stat.items()
    )
    return ProcessedDiff(
        summary=summary or "\n".join(paths),
        stats=DiffStats(
            original_length=len(summary),
            processed_length=len(summary),
            files_changed=len(paths),
            additions=sum(ins for ins, _ in num_stat.values()),
            deletions=sum(dels for _, dels in num_stat.values()),
        ),
        signals=DiffSignals(
            name_status=name_status,
            num_stat=num,
            top_files=top if top is not None else tuple(num_stat),
            patch_snippets=snippets,
        ),
        is_merge=is_merge,
    )


@pytest.fixture
def make_diff() -> Callable[..., ProcessedDiff]:
    """Factory for hand-built :class:`ProcessedDiff` values."""
    return build_diff
