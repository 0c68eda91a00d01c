import json

import pytest

from aico.config import (
    DEFAULT_MODELS,
    Config,
    config_file_path,
    deep_merge,
    describe_provider,
    full_model_for,
    load_config,
    load_persisted_config,
    save_config,
)
from aico.exceptions import ConfigError


def test_defaults(tmp_path):
    cfg = load_config()

    assert cfg.provider == "openai"
    assert cfg.llm.model == DEFAULT_MODELS["openai"]["model"]
    assert cfg.llm.api_key_env == "OPENAI_API_KEY"
    assert cfg.commit.max_title_length == 72
    assert cfg.commit.include_body == "auto"
    assert cfg.debug is False
    assert cfg.resolve_api_key() == "sk-test"
    assert config_file_path() == tmp_path / ".aico" / "config.json"


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("AICO_MODEL", "gpt-4o")
    monkeypatch.setenv("AICO_MAX_TITLE_LENGTH", "60")
    monkeypatch.setenv("AICO_INCLUDE_BODY", "NEVER")
    monkeypatch.setenv("AICO_DEBUG", "yes")

    cfg = load_config()

    assert cfg.llm.model == "gpt-4o"
    assert cfg.commit.max_title_length == 60
    assert cfg.commit.include_body == "never"
    assert cfg.debug is True


def test_explicit_overrides_beat_env(monkeypatch, tmp_path):
    monkeypatch.setenv("AICO_MODEL", "gpt-4o")

    cfg = load_config(repo_path=str(tmp_path), overrides={"llm": {"model": "gpt-4o-mini"}})

    assert cfg.llm.model == "gpt-4o-mini"
    assert cfg.repo_path == str(tmp_path)


def test_persisted_file_is_merged_and_migrated():
    path = config_file_path()
    path.parent.mkdir(parents=True)
    path.write_text(
        json.dumps(
            {
                "openai": {"model": "gpt-4o", "max_tokens": 300},
                "commit": {"include_body": True, "scope_rules": [{"scope": "api", "match": "^api/"}]},
                "debug": {"enabled": True},
            }
        )
    )

    cfg = load_config()

    assert cfg.llm.model == "gpt-4o"
    assert cfg.llm.max_tokens == 300
    assert cfg.commit.include_body == "always"
    assert cfg.commit.scope_rules == ({"scope": "api", "match": "^api/"},)
    assert cfg.debug is True


def test_corrupt_file_raises_config_error():
    path = config_file_path()
    path.parent.mkdir(parents=True)
    path.write_text("{not json")

    with pytest.raises(ConfigError, match="Failed to read config file"):
        load_config()


def test_non_object_file_raises_config_error(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text("[1, 2]")

    with pytest.raises(ConfigError, match="JSON object"):
        load_persisted_config(path)


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"provider": "mystery"}, "Unsupported provider"),
        ({"commit": {"include_body": "sometimes"}}, "include_body"),
        ({"commit": {"max_title_length": 0}}, "positive integer"),
        ({"commit": {"max_title_length": "long"}}, "Invalid configuration value"),
        ({"commit": {"scope_rules": "api"}}, "scope_rules"),
    ],
)
def test_invalid_values_raise(overrides, message):
    with pytest.raises(ConfigError, match=message):
        load_config(overrides=overrides)


def test_scope_rules_without_match_are_dropped():
    cfg = load_config(
        overrides={"commit": {"scope_rules": [{"scope": "all"}, {"scope": "any", "match": ""}, {"scope": "api", "match": "^api/"}]}}
    )

    assert cfg.commit.scope_rules == ({"scope": "api", "match": "^api/"},)


def test_provider_switch_resets_provider_specific_llm_fields():
    save_config({"provider": "openai", "llm": {"model": "gpt-4o", "max_tokens": 300}})

    cfg = load_config(overrides={"provider": "anthropic"})

    assert cfg.provider == "anthropic"
    assert cfg.llm.model == DEFAULT_MODELS["anthropic"]["model"]
    assert cfg.llm.endpoint == "https://api.anthropic.com"
    assert cfg.llm.api_key_env == "ANTHROPIC_API_KEY"
    assert cfg.llm.max_tokens == 300


def test_save_config_deep_merges():
    save_config({"llm": {"model": "gpt-4o"}})
    path = save_config({"llm": {"api_key": "sk-saved"}, "commit": {"max_title_length": 50}})

    data = json.loads(path.read_text())

    assert data == {"llm": {"model": "gpt-4o", "api_key": "sk-saved"}, "commit": {"max_title_length": 50}}


def test_persisted_api_key_is_used_when_env_missing(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY")
    save_config({"llm": {"api_key": "sk-saved"}})

    assert load_config().resolve_api_key() == "sk-saved"


def test_deep_merge_skips_none():
    assert deep_merge({"a": {"b": 1}}, {"a": {"c": 2}, "d": None}, None) == {"a": {"b": 1, "c": 2}}


def test_full_model_for():
    assert full_model_for(Config()) == "gpt-4o"
    assert full_model_for(Config().with_model("gpt-5-mini")) == "gpt-5"
    assert full_model_for(Config().with_model("gpt-4o")) == "gpt-4o"


def test_to_dict_round_trips_through_build():
    cfg = load_config(overrides={"commit": {"scope_rules": [{"scope": "api", "match": "^api/"}]}})

    data = cfg.to_dict()

    assert data["commit"]["scope_rules"] == [{"scope": "api", "match": "^api/"}]
    assert data["llm"]["model"] == cfg.llm.model


def test_describe_provider():
    assert describe_provider("openai") == "openai (default model: gpt-4o-mini)"
    assert describe_provider("other") == "other"
