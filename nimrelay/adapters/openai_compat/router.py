"""OpenAI-compatible routes."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncGenerator

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError
from starlette.background import BackgroundTask

from nimrelay.adapters.openai_compat.mapper import (
    build_upstream_request,
    to_chat_response,
    to_error_body,
    to_models_list,
)
from nimrelay.adapters.openai_compat.stream_utils import (
    SSELineDecoder,
    StreamReshaper,
    _build_streaming_response,
    _stream_done_sse_chunk,
    _stream_error_sse_chunk,
)
from nimrelay.adapters.openai_compat.upstream import (
    _build_upstream_headers,
    _build_upstream_url,
    _forward_json,
    _iter_upstream_bytes,
    _open_upstream_stream,
    _probe_model,
)
from nimrelay.config.feature_flags import RelayOptions, relay_options
from nimrelay.config.model_mapping import load_model_mapping
from nimrelay.config.policy_prompt import load_policy_prompt
from nimrelay.config.settings import settings
from nimrelay.core.errors import UpstreamError
from nimrelay.core.model_resolver import FallbackModels, ModelResolver
from nimrelay.core.models import ChatCompletionRequest
from nimrelay.util.logger import logger


router = APIRouter()
policy_prompt = load_policy_prompt(settings.policy_prompt_path)


def _upstream_url() -> str:
    return _build_upstream_url(settings.upstream_base_url)


def _upstream_headers() -> dict[str, str]:
    return _build_upstream_headers(settings.upstream_api_key)


async def _probe_upstream_model(model: str) -> bool:
    return await _probe_model(_upstream_url(), model, _upstream_headers())


model_resolver = ModelResolver(
    mapping=load_model_mapping(settings.model_mapping_json),
    probe=_probe_upstream_model,
    fallbacks=FallbackModels(
        large=settings.fallback_large_model,
        medium=settings.fallback_medium_model,
        small=settings.fallback_small_model,
    ),
)

_DEBUG_REQUEST_BODY_MAX_CHARS = 32000
_DEBUG_HEADERS_REDACT = frozenset({"authorization", "proxy-authorization", "cookie"})


def _log_request_if_debug(request: Request, payload: dict[str, Any]) -> None:
    """DEBUG 级别下打印请求概要（method/path/headers/body_size）与截断后的正文。"""
    if not logger.isEnabledFor(logging.DEBUG):
        return
    headers_safe = {
        k: "***" if k.lower() in _DEBUG_HEADERS_REDACT or "key" in k.lower() else v
        for k, v in request.headers.items()
    }
    try:
        body_str = json.dumps(payload, ensure_ascii=False)
    except (TypeError, ValueError):
        body_str = str(payload)
    logger.debug(
        "incoming request method=%s path=%s headers=%s body_size=%d",
        request.method,
        request.url.path,
        headers_safe,
        len(body_str),
    )
    logger.debug("incoming request body: %s", body_str[:_DEBUG_REQUEST_BODY_MAX_CHARS])


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=to_error_body(message, status_code))


def _validation_detail(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ())) or "body"
        parts.append(f"{location}: {error.get('msg', 'invalid value')}")
    return "; ".join(parts) or "invalid request body"


async def _build_chat_upstream_payload(
    chat_request: ChatCompletionRequest,
    options: RelayOptions,
    resolver: ModelResolver,
) -> dict[str, Any]:
    upstream_model = await resolver.resolve(chat_request.model)
    return build_upstream_request(chat_request, upstream_model, options, policy_prompt)


async def _execute_chat_once(
    *,
    chat_request: ChatCompletionRequest,
    options: RelayOptions,
    resolver: ModelResolver,
) -> dict[str, Any]:
    upstream_payload = await _build_chat_upstream_payload(chat_request, options, resolver)
    logger.info(
        "chat completion forward model=%s upstream_model=%s messages=%d",
        chat_request.model,
        upstream_payload["model"],
        len(upstream_payload["messages"]),
    )
    upstream_body = await _forward_json(_upstream_url(), upstream_payload, _upstream_headers())
    return to_chat_response(upstream_body, chat_request.model, options)


async def _relay_stream(
    chunks: AsyncGenerator[bytes, None],
    reshaper: StreamReshaper,
    *,
    model: str,
    options: RelayOptions,
) -> AsyncGenerator[bytes, None]:
    decoder = SSELineDecoder()
    frame_count = 0
    try:
        async for chunk in chunks:
            for line in decoder.feed(chunk):
                frame = reshaper.feed(line)
                if frame is not None:
                    frame_count += 1
                    yield frame
        for line in decoder.flush():
            frame = reshaper.feed(line)
            if frame is not None:
                frame_count += 1
                yield frame
    except UpstreamError as exc:
        # 响应头已发出，只能记录日志并结束流
        logger.error("chat stream upstream failure model=%s frames=%d error=%s", model, frame_count, exc.detail)
        if options.stream_error_event:
            yield _stream_error_sse_chunk(exc.detail, code=exc.status_code)
            yield _stream_done_sse_chunk()
    finally:
        await chunks.aclose()
        logger.debug("chat stream closed model=%s frames=%d", model, frame_count)


async def _execute_chat_stream_once(
    *,
    chat_request: ChatCompletionRequest,
    options: RelayOptions,
    resolver: ModelResolver,
) -> StreamingResponse:
    upstream_payload = await _build_chat_upstream_payload(chat_request, options, resolver)
    logger.info(
        "chat stream forward model=%s upstream_model=%s messages=%d",
        chat_request.model,
        upstream_payload["model"],
        len(upstream_payload["messages"]),
    )
    upstream_response = await _open_upstream_stream(_upstream_url(), upstream_payload, _upstream_headers())
    generator = _relay_stream(
        _iter_upstream_bytes(upstream_response),
        StreamReshaper(options),
        model=chat_request.model,
        options=options,
    )
    # 客户端在首个 chunk 前断开时生成器不会启动，由后台任务兜底关闭上游连接
    return _build_streaming_response(generator, background=BackgroundTask(upstream_response.aclose))


@router.get("/models")
async def list_models() -> dict[str, Any]:
    return to_models_list(model_resolver.mapping.keys())


@router.post("/chat/completions")
async def chat_completions(payload: dict, request: Request):
    _log_request_if_debug(request, payload)
    try:
        chat_request = ChatCompletionRequest.model_validate(payload)
    except ValidationError as exc:
        detail = _validation_detail(exc)
        logger.warning("invalid chat request path=%s detail=%s", request.url.path, detail)
        return _error_response(400, detail)

    try:
        if chat_request.stream:
            return await _execute_chat_stream_once(
                chat_request=chat_request,
                options=relay_options,
                resolver=model_resolver,
            )
        return await _execute_chat_once(
            chat_request=chat_request,
            options=relay_options,
            resolver=model_resolver,
        )
    except UpstreamError as exc:
        logger.error("proxy error model=%s status=%s error=%s", chat_request.model, exc.status_code, exc.detail)
        return _error_response(exc.status_code, exc.detail)
    except Exception as exc:
        logger.exception("proxy internal error model=%s", chat_request.model)
        return _error_response(500, str(exc) or "Internal server error")
