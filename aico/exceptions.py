"""Exception hierarchy for aico."""


class AicoError(Exception):
    """Base exception for all aico errors."""


class GitError(AicoError):
    """Raised when a git command fails or git is unavailable."""


class LLMError(AicoError):
    """Raised when the model provider fails or returns unusable output."""


class ConfigError(AicoError):
    """Raised when configuration cannot be loaded or is invalid."""


class ValidationError(AicoError):
    """Raised for input errors such as missing staged changes."""
