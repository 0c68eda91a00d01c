"""Configuration management for aico."""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .exceptions import ConfigError

CONFIG_HOME_ENV = "AICO_CONFIG_HOME"
CONFIG_FILE_NAME = "config.json"

INCLUDE_BODY_MODES = ("auto", "never", "always")

DEFAULT_MODELS = {
    "openai": {
        "model": "gpt-4o-mini",
        "full_model": "gpt-4o",
        "endpoint": "https://api.openai.com/v1",
        "api_key_env": "OPENAI_API_KEY",
    },
    "anthropic": {
        "model": "claude-3-5-haiku-latest",
        "full_model": "claude-3-7-sonnet-latest",
        "endpoint": "https://api.anthropic.com",
        "api_key_env": "ANTHROPIC_API_KEY",
    },
}

KNOWN_MODELS = {
    "openai": ("gpt-4o", "gpt-4o-mini"),
    "anthropic": ("claude-3-5-haiku-latest", "claude-3-7-sonnet-latest"),
}

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class LLMConfig:
    """Model call parameters."""

    model: str = DEFAULT_MODELS["openai"]["model"]
    endpoint: str = DEFAULT_MODELS["openai"]["endpoint"]
    api_key_env: str = DEFAULT_MODELS["openai"]["api_key_env"]
    api_key: Optional[str] = None
    max_tokens: int = 200
    temperature: float = 0.3
    top_p: float = 0.9
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0


@dataclass(frozen=True)
class CommitConfig:
    """Commit message policy."""

    max_title_length: int = 72
    include_body: str = "auto"
    scope_rules: Tuple[Dict[str, str], ...] = ()
    enable_behavior_templates: bool = False


@dataclass(frozen=True)
class Config:
    """Resolved runtime configuration for aico.

    Built once at startup by :func:`load_config` and passed explicitly to
    every component. Never mutated afterwards; use :meth:`with_model` to
    derive a variant.
    """

    provider: str = "openai"
    llm: LLMConfig = field(default_factory=LLMConfig)
    commit: CommitConfig = field(default_factory=CommitConfig)
    debug: bool = False
    repo_path: str = "."

    def resolve_api_key(self) -> Optional[str]:
        """Return the API key from the configured env var or persisted value."""
        return os.environ.get(self.llm.api_key_env) or self.llm.api_key

    def with_model(self, model: str) -> "Config":
        return replace(self, llm=replace(self.llm, model=model))

    def to_dict(self) -> Dict[str, Any]:
        """Serialise configuration to a dict for persistence."""
        data = asdict(self)
        data["commit"]["scope_rules"] = [
            dict(rule) for rule in self.commit.scope_rules
        ]
        return data


def config_file_path() -> Path:
    """Return the location of the persisted config file."""
    home = os.environ.get(CONFIG_HOME_ENV)
    if home:
        return Path(home).expanduser() / CONFIG_FILE_NAME
    return Path.home() / ".config" / "aico" / CONFIG_FILE_NAME


def _is_plain_dict(value: Any) -> bool:
    return isinstance(value, dict)


def deep_merge(*layers: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Merge dicts left to right; nested dicts merge, ``None`` values are skipped."""
    result: Dict[str, Any] = {}
    for layer in layers:
        if not layer:
            continue
        for key, value in layer.items():
            if value is None:
                continue
            if _is_plain_dict(value) and _is_plain_dict(result.get(key)):
                result[key] = deep_merge(result[key], value)
            else:
                result[key] = value
    return result


def _migrate(data: Dict[str, Any]) -> Dict[str, Any]:
    migrated = dict(data)
    # Older files stored model settings under "openai".
    if "openai" in migrated and "llm" not in migrated:
        migrated["llm"] = migrated.pop("openai")
    commit = migrated.get("commit")
    if _is_plain_dict(commit) and isinstance(commit.get("include_body"), bool):
        commit = dict(commit)
        commit["include_body"] = "always" if commit["include_body"] else "never"
        migrated["commit"] = commit
    debug = migrated.get("debug")
    if _is_plain_dict(debug):
        migrated["debug"] = bool(debug.get("enabled", False))
    return migrated


def load_persisted_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Return the persisted config as a dict; empty when no file exists."""
    cfg_path = path or config_file_path()
    if not cfg_path.exists():
        return {}
    try:
        data = json.loads(cfg_path.read_text())
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Failed to read config file {cfg_path}: {exc}") from exc
    if not _is_plain_dict(data):
        raise ConfigError(f"Config file {cfg_path} must contain a JSON object")
    return _migrate(data)


def save_config(overrides: Dict[str, Any], path: Optional[Path] = None) -> Path:
    """Deep-merge ``overrides`` into the persisted config file."""
    cfg_path = path or config_file_path()
    existing = load_persisted_config(cfg_path)
    merged = deep_merge(existing, _migrate(overrides))
    cfg_path.parent.mkdir(parents=True, exist_ok=True)
    cfg_path.write_text(json.dumps(merged, indent=2))
    return cfg_path


def _env_overrides(env: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    source = dict(env if env is not None else os.environ)
    overrides: Dict[str, Any] = {"llm": {}, "commit": {}}
    if source.get("AICO_PROVIDER"):
        overrides["provider"] = source["AICO_PROVIDER"]
    if source.get("AICO_MODEL"):
        overrides["llm"]["model"] = source["AICO_MODEL"]
    if source.get("AICO_MAX_TITLE_LENGTH"):
        overrides["commit"]["max_title_length"] = source["AICO_MAX_TITLE_LENGTH"]
    if source.get("AICO_INCLUDE_BODY"):
        overrides["commit"]["include_body"] = source["AICO_INCLUDE_BODY"]
    if source.get("AICO_DEBUG"):
        overrides["debug"] = source["AICO_DEBUG"].lower() in _TRUTHY
    return overrides


def _provider_defaults(provider: str) -> Dict[str, Any]:
    meta = DEFAULT_MODELS[provider]
    return {
        "model": meta["model"],
        "endpoint": meta["endpoint"],
        "api_key_env": meta["api_key_env"],
    }


def build_config(data: Dict[str, Any]) -> Config:
    """Validate a merged config dict and construct a :class:`Config`."""
    provider = str(data.get("provider") or "openai")
    if provider not in DEFAULT_MODELS:
        raise ConfigError(
            f"Unsupported provider '{provider}'. "
            f"Expected one of: {', '.join(DEFAULT_MODELS)}"
        )

    llm_data = deep_merge(_provider_defaults(provider), data.get("llm") or {})
    commit_data = dict(data.get("commit") or {})

    try:
        llm = LLMConfig(
            model=str(llm_data["model"]),
            endpoint=str(llm_data["endpoint"]),
            api_key_env=str(llm_data["api_key_env"]),
            api_key=llm_data.get("api_key") or None,
            max_tokens=int(llm_data.get("max_tokens", 200)),
            temperature=float(llm_data.get("temperature", 0.3)),
            top_p=float(llm_data.get("top_p", 0.9)),
            frequency_penalty=float(llm_data.get("frequency_penalty", 0.0)),
            presence_penalty=float(llm_data.get("presence_penalty", 0.0)),
        )
        max_title_length = int(commit_data.get("max_title_length", 72))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid configuration value: {exc}") from exc

    if max_title_length <= 0:
        raise ConfigError("commit.max_title_length must be a positive integer")

    include_body = str(commit_data.get("include_body", "auto")).lower()
    if include_body not in INCLUDE_BODY_MODES:
        raise ConfigError(
            f"commit.include_body must be one of {', '.join(INCLUDE_BODY_MODES)}"
        )

    raw_rules = commit_data.get("scope_rules") or []
    if not isinstance(raw_rules, (list, tuple)):
        raise ConfigError("commit.scope_rules must be a list of {scope, match}")
    scope_rules = tuple(
        {"scope": str(rule.get("scope", "")), "match": str(rule.get("match", ""))}
        for rule in raw_rules
        if _is_plain_dict(rule) and rule.get("match")
    )

    commit = CommitConfig(
        max_title_length=max_title_length,
        include_body=include_body,
        scope_rules=scope_rules,
        enable_behavior_templates=bool(
            commit_data.get("enable_behavior_templates", False)
        ),
    )

    return Config(
        provider=provider,
        llm=llm,
        commit=commit,
        debug=bool(data.get("debug", False)),
        repo_path=str(data.get("repo_path") or "."),
    )


def load_config(
    *,
    repo_path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
    env: Optional[Dict[str, str]] = None,
) -> Config:
    """Build configuration from defaults, config file, environment and overrides."""
    persisted = load_persisted_config()
    merged = deep_merge(
        {"provider": "openai", "repo_path": repo_path or "."},
        persisted,
        _env_overrides(env),
        _migrate(overrides or {}),
    )
    # A provider switch must not inherit the previous provider's model,
    # endpoint or key variable unless they were set explicitly this run.
    provider = merged.get("provider", "openai")
    if persisted.get("provider", "openai") != provider:
        explicit = deep_merge(_env_overrides(env), _migrate(overrides or {}))
        llm = dict(merged.get("llm") or {})
        for key in ("model", "endpoint", "api_key_env", "api_key"):
            if key not in (explicit.get("llm") or {}):
                llm.pop(key, None)
        merged["llm"] = llm
    if repo_path:
        merged["repo_path"] = repo_path
    return build_config(merged)


def full_model_for(config: Config) -> str:
    """Return the non-mini variant of the configured model, if one is known."""
    meta = DEFAULT_MODELS.get(config.provider, {})
    model = config.llm.model
    if "mini" in model:
        if model == meta.get("model"):
            return meta.get("full_model", model)
        return model.replace("-mini", "")
    return model


def describe_provider(provider: str) -> str:
    meta = DEFAULT_MODELS.get(provider)
    if not meta:
        return provider
    return f"{provider} (default model: {meta['model']})"
