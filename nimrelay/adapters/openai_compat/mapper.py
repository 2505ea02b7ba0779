"""OpenAI <-> NIM payload mapping."""

from __future__ import annotations

import time
import uuid
from typing import Any, Iterable

from nimrelay.config.feature_flags import RelayOptions
from nimrelay.core.models import ChatCompletionRequest

DEFAULT_TEMPERATURE = 0.5
DEFAULT_MAX_TOKENS = 16384
THINK_OPEN = "<think>\n"
THINK_CLOSE = "</think>\n\n"
REASONING_KEYS = ("reasoning_content", "reasoning")

_ZERO_USAGE = {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}


def new_completion_id() -> str:
    return f"chatcmpl-{uuid.uuid4().hex[:24]}"


def build_upstream_request(
    request: ChatCompletionRequest,
    upstream_model: str,
    options: RelayOptions,
    policy_prompt: str,
) -> dict[str, Any]:
    messages = [message.model_dump(exclude_unset=True) for message in request.messages]
    if not request.has_leading_system_message():
        messages.insert(0, {"role": "system", "content": policy_prompt})

    upstream: dict[str, Any] = {
        "model": upstream_model,
        "messages": messages,
        "temperature": DEFAULT_TEMPERATURE if request.temperature is None else request.temperature,
        "max_tokens": DEFAULT_MAX_TOKENS if request.max_tokens is None else request.max_tokens,
        "stream": bool(request.stream),
    }
    if options.thinking_mode:
        upstream["chat_template_kwargs"] = {"thinking": True}
    return upstream


def _message_text(message: dict[str, Any], show_reasoning: bool) -> str:
    content = message.get("content") or ""
    if not isinstance(content, str):
        content = str(content)
    reasoning = ""
    for key in REASONING_KEYS:
        value = message.get(key)
        if isinstance(value, str) and value:
            reasoning = value
            break
    if show_reasoning and reasoning:
        return f"{THINK_OPEN}{reasoning}\n{THINK_CLOSE}{content}"
    return content


def _to_choice(choice: dict[str, Any], show_reasoning: bool) -> dict[str, Any]:
    message = choice.get("message")
    if not isinstance(message, dict):
        message = {}
    return {
        "index": choice.get("index", 0),
        "message": {
            "role": message.get("role", "assistant"),
            "content": _message_text(message, show_reasoning),
        },
        "finish_reason": choice.get("finish_reason"),
    }


def to_chat_response(upstream_body: dict[str, Any], model: str, options: RelayOptions) -> dict[str, Any]:
    choices = upstream_body.get("choices")
    if not isinstance(choices, list):
        choices = []
    usage = upstream_body.get("usage")
    return {
        "id": new_completion_id(),
        "object": "chat.completion",
        "created": int(time.time()),
        "model": model,
        "choices": [_to_choice(choice, options.show_reasoning) for choice in choices if isinstance(choice, dict)],
        "usage": usage if isinstance(usage, dict) else dict(_ZERO_USAGE),
    }


def to_error_body(message: str, code: int) -> dict[str, Any]:
    return {
        "error": {
            "message": message,
            "type": "invalid_request_error",
            "code": code,
        }
    }


def to_models_list(model_ids: Iterable[str], owned_by: str = "nvidia-nim-proxy") -> dict[str, Any]:
    created = int(time.time() * 1000)
    return {
        "object": "list",
        "data": [{"id": model_id, "object": "model", "created": created, "owned_by": owned_by} for model_id in model_ids],
    }
