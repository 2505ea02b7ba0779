import dataclasses

import pytest

from nimrelay.config.feature_flags import RelayOptions
from nimrelay.config.model_mapping import DEFAULT_MODEL_MAPPING, load_model_mapping
from nimrelay.config.policy_prompt import POLICY_PROMPT, load_policy_prompt
from nimrelay.config.settings import Settings
from nimrelay.core.errors import ConfigurationError


def test_settings_accept_legacy_env_names(monkeypatch):
    monkeypatch.setenv("NIM_API_BASE", "http://nim.local:8000/v1")
    monkeypatch.setenv("NIM_API_KEY", "nvapi-test")
    monkeypatch.setenv("PORT", "4000")
    monkeypatch.setenv("NIMRELAY_SHOW_REASONING", "true")

    loaded = Settings()

    assert loaded.upstream_base_url == "http://nim.local:8000/v1"
    assert loaded.upstream_api_key == "nvapi-test"
    assert loaded.port == 4000
    assert loaded.show_reasoning is True
    assert loaded.enable_thinking_mode is False


def test_relay_options_from_settings_is_immutable():
    options = RelayOptions.from_settings(
        Settings(show_reasoning=True, enable_thinking_mode=True, stream_error_event=False)
    )

    assert options == RelayOptions(show_reasoning=True, thinking_mode=True, stream_error_event=False)
    with pytest.raises(dataclasses.FrozenInstanceError):
        options.show_reasoning = False


def test_model_mapping_defaults_are_read_only():
    mapping = load_model_mapping("")
    assert mapping is DEFAULT_MODEL_MAPPING
    assert mapping["gpt-4"] == "qwen/qwen3-coder-480b-a35b-instruct"
    with pytest.raises(TypeError):
        mapping["gpt-4"] = "other"  # type: ignore[index]


def test_model_mapping_override_replaces_table():
    mapping = load_model_mapping('{"my-model": "meta/llama-3.3-70b-instruct"}')
    assert dict(mapping) == {"my-model": "meta/llama-3.3-70b-instruct"}


@pytest.mark.parametrize("raw", ["{broken", "[1, 2]", '{"a": 1}', '{"a": ""}'])
def test_model_mapping_override_rejects_invalid_json(raw):
    with pytest.raises(ConfigurationError):
        load_model_mapping(raw)


def test_policy_prompt_builtin_and_file_override(tmp_path):
    assert load_policy_prompt("") == POLICY_PROMPT
    assert POLICY_PROMPT.startswith("SYSTEM DIRECTIVE")

    prompt_file = tmp_path / "policy.txt"
    prompt_file.write_text("Answer in French.", encoding="utf-8")
    assert load_policy_prompt(str(prompt_file)) == "Answer in French."


def test_policy_prompt_file_errors(tmp_path):
    with pytest.raises(ConfigurationError):
        load_policy_prompt(str(tmp_path / "missing.txt"))

    empty = tmp_path / "empty.txt"
    empty.write_text("  \n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_policy_prompt(str(empty))
