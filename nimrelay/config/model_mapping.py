"""Inbound -> upstream model table."""

from __future__ import annotations

import json
from types import MappingProxyType
from typing import Mapping

from nimrelay.core.errors import ConfigurationError

DEFAULT_MODEL_MAPPING: Mapping[str, str] = MappingProxyType(
    {
        "gpt-3.5-turbo": "nvidia/llama-3.1-nemotron-ultra-253b-v1",
        "gpt-4": "qwen/qwen3-coder-480b-a35b-instruct",
        "gpt-4-turbo": "moonshotai/kimi-k2-instruct-0905",
        "deepseek-v3.1-terminus": "deepseek-ai/deepseek-v3.1-terminus",
        "deepseek-v3.2": "deepseek-ai/deepseek-v3.2",
        "claude-3-sonnet": "openai/gpt-oss-20b",
        "gemini-pro": "qwen/qwen3-next-80b-a3b-thinking",
    }
)


def load_model_mapping(raw_json: str = "") -> Mapping[str, str]:
    """Return the read-only mapping, replaced wholesale by ``raw_json`` when given."""
    if not raw_json.strip():
        return DEFAULT_MODEL_MAPPING
    try:
        parsed = json.loads(raw_json)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"model_mapping_json is not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ConfigurationError("model_mapping_json must be a JSON object")
    for key, value in parsed.items():
        if not isinstance(value, str) or not value.strip():
            raise ConfigurationError(f"model_mapping_json entry {key!r} must map to a non-empty string")
    return MappingProxyType(dict(parsed))
