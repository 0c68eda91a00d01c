"""Path classification for files that carry no useful commit signal."""

from __future__ import annotations

import re

# Lockfiles, build output, generated artefacts and editor/VCS metadata.
NOISY_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern)
    for pattern in (
        r"^package-lock\.json$",
        r"^yarn\.lock$",
        r"^pnpm-lock\.yaml$",
        r"^poetry\.lock$",
        r"^uv\.lock$",
        r"^.*\.lock$",
        r"^dist/",
        r"^build/",
        r"^\.next/",
        r"^node_modules/",
        r"(^|/)__pycache__/",
        r"\.py[co]$",
        r"^\.idea/",
        r"^\.vscode/",
        r"^\.git/",
        r"\.min\.(js|css)$",
        r"\.bundle\.js$",
        r"\.generated\.",
        r"^\.env",
        r"\.DS_Store$",
    )
)

BINARY_EXTENSIONS = frozenset(
    {
        # video
        "mp4", "mov", "avi", "mkv", "wmv",
        # images
        "png", "jpg", "jpeg", "gif", "bmp", "ico", "svg", "webp",
        # audio
        "mp3", "wav", "ogg", "m4a",
        # documents
        "pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx",
        # archives
        "zip", "rar", "tar", "gz", "7z",
        # executables and libraries
        "exe", "dll", "so", "dylib", "bin",
        # fonts
        "ttf", "otf", "woff", "woff2",
    }
)


def is_noisy(path: str) -> bool:
    """Return True for lockfiles, build output and other generated paths."""
    return any(pattern.search(path) for pattern in NOISY_PATTERNS)


def is_binary_or_media(path: str) -> bool:
    """Return True when the path's extension marks it as binary or media."""
    name = path.rsplit("/", 1)[-1]
    if "." not in name:
        return False
    return name.rsplit(".", 1)[-1].lower() in BINARY_EXTENSIONS


def is_signal_path(path: str) -> bool:
    return not is_noisy(path) and not is_binary_or_media(path)
