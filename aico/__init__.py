"""aico - LLM-assisted commit, branch and pull request messages."""

from importlib import import_module
from typing import TYPE_CHECKING

__version__ = "0.1.0"

# Public API (lazy-exported to avoid import-time side effects)
__all__ = [
    # Config
    "Config", "load_config",
    # Diff and classification
    "DiffProcessor", "CommitHeuristics", "ScopeInferrer",
    # Validation and repair
    "CommitValidator", "PullRequestValidator", "SubjectRepairer",
    # LLM
    "LLMClient", "PromptBuilder",
    # Git
    "GitRepo",
    # Generation
    "CommitGenerator", "CommitMessage", "PullRequestMessage", "ProcessedDiff",
    # Core workflow
    "AicoWorkflow", "CommitResult",
    # Exceptions
    "AicoError", "GitError", "LLMError", "ConfigError", "ValidationError",
]


def __getattr__(name: str):
    """Lazy attribute loader so importing ``aico`` pulls in no SDKs.

    The provider clients are only imported when ``LLMClient`` or the
    workflow is first accessed.
    """
    mapping = {
        # Config
        "Config": ("aico.config", "Config"),
        "load_config": ("aico.config", "load_config"),
        # Diff and classification
        "DiffProcessor": ("aico.diff", "DiffProcessor"),
        "CommitHeuristics": ("aico.heuristics", "CommitHeuristics"),
        "ScopeInferrer": ("aico.heuristics", "ScopeInferrer"),
        # Validation and repair
        "CommitValidator": ("aico.validation", "CommitValidator"),
        "PullRequestValidator": ("aico.validation", "PullRequestValidator"),
        "SubjectRepairer": ("aico.repair", "SubjectRepairer"),
        # LLM
        "LLMClient": ("aico.llm", "LLMClient"),
        "PromptBuilder": ("aico.prompts", "PromptBuilder"),
        # Git
        "GitRepo": ("aico.git", "GitRepo"),
        # Generation
        "CommitGenerator": ("aico.commit", "CommitGenerator"),
        "CommitMessage": ("aico.models", "CommitMessage"),
        "PullRequestMessage": ("aico.models", "PullRequestMessage"),
        "ProcessedDiff": ("aico.models", "ProcessedDiff"),
        # Core workflow
        "AicoWorkflow": ("aico.core", "AicoWorkflow"),
        "CommitResult": ("aico.core", "CommitResult"),
        # Exceptions
        "AicoError": ("aico.exceptions", "AicoError"),
        "GitError": ("aico.exceptions", "GitError"),
        "LLMError": ("aico.exceptions", "LLMError"),
        "ConfigError": ("aico.exceptions", "ConfigError"),
        "ValidationError": ("aico.exceptions", "ValidationError"),
    }
    if name in mapping:
        mod_name, attr = mapping[name]
        mod = import_module(mod_name)
        value = getattr(mod, attr)
        globals()[name] = value  # cache for future access
        return value
    raise AttributeError(f"module 'aico' has no attribute {name!r}")


if TYPE_CHECKING:
    # For type checkers and IDEs, provide direct imports
    from .config import Config, load_config
    from .diff import DiffProcessor
    from .heuristics import CommitHeuristics, ScopeInferrer
    from .validation import CommitValidator, PullRequestValidator
    from .repair import SubjectRepairer
    from .llm import LLMClient
    from .prompts import PromptBuilder
    from .git import GitRepo
    from .commit import CommitGenerator
    from .models import CommitMessage, PullRequestMessage, ProcessedDiff
    from .core import AicoWorkflow, CommitResult
    from .exceptions import (
        AicoError,
        GitError,
        LLMError,
        ConfigError,
        ValidationError,
    )
