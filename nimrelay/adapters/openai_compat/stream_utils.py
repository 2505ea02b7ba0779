"""
流式 SSE 行解码、delta 重排（reasoning -> <think> 内容）与 chunk 构建。从 router 拆出，便于维护与单测。
"""

from __future__ import annotations

import json
from typing import Any, AsyncIterable, Iterable

from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from nimrelay.adapters.openai_compat.mapper import REASONING_KEYS, THINK_CLOSE, THINK_OPEN
from nimrelay.config.feature_flags import RelayOptions

SSE_DATA_PREFIX = "data:"
SSE_DONE_TOKEN = "[DONE]"


class SSELineDecoder:
    """
    Re-frames arbitrarily chunked upstream bytes into complete lines.

    Bytes after the last ``\\n`` are kept until a later ``feed`` completes them,
    so neither a line nor a multibyte UTF-8 character is ever split.
    """

    def __init__(self) -> None:
        self._tail = b""

    @property
    def pending(self) -> bool:
        return bool(self._tail)

    def feed(self, chunk: bytes) -> list[str]:
        *complete, self._tail = (self._tail + chunk).split(b"\n")
        return [_decode_line(raw) for raw in complete]

    def flush(self) -> list[str]:
        """Return the unterminated remainder (if any) at end of stream."""
        tail, self._tail = self._tail, b""
        if not tail:
            return []
        return [_decode_line(tail)]


def _decode_line(raw: bytes) -> str:
    if raw.endswith(b"\r"):
        raw = raw[:-1]
    return raw.decode("utf-8", errors="replace")


def _extract_sse_data_payload(line: str) -> str | None:
    if not line.startswith(SSE_DATA_PREFIX):
        return None
    payload = line[len(SSE_DATA_PREFIX):]
    if payload.startswith(" "):
        payload = payload[1:]
    return payload


def _sse_frame(line: str) -> bytes:
    return f"{line}\n\n".encode("utf-8")


def _sse_event(payload: dict[str, Any]) -> bytes:
    return _sse_frame(f"data: {json.dumps(payload, ensure_ascii=False)}")


def _first_delta(event: dict[str, Any]) -> dict[str, Any] | None:
    choices = event.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    delta = first.get("delta")
    return delta if isinstance(delta, dict) else None


def _pop_reasoning(delta: dict[str, Any]) -> str:
    text = ""
    for key in REASONING_KEYS:
        value = delta.pop(key, None)
        if not text and isinstance(value, str) and value:
            text = value
    return text


class StreamReshaper:
    """
    Per-response reshaper. One instance per streamed request: it owns the
    ``reasoning_open`` flag, which must never be shared across streams.
    """

    def __init__(self, options: RelayOptions) -> None:
        self._options = options
        self.reasoning_open = False

    def feed(self, line: str) -> bytes | None:
        """Map one upstream line to zero or one outbound SSE frame."""
        payload = _extract_sse_data_payload(line)
        if payload is None:
            return None
        if payload.strip() == SSE_DONE_TOKEN:
            return _sse_frame(line)

        try:
            event = json.loads(payload)
        except (ValueError, RecursionError):
            # 嵌套过深的 payload 也按原样透传
            return _sse_frame(line)
        if not isinstance(event, dict):
            return _sse_frame(line)

        delta = _first_delta(event)
        if delta is not None:
            self._reshape_delta(delta)
        return _sse_event(event)

    def _reshape_delta(self, delta: dict[str, Any]) -> None:
        reasoning = _pop_reasoning(delta)
        raw_content = delta.get("content")
        content = raw_content if isinstance(raw_content, str) else ""

        if not self._options.show_reasoning:
            delta["content"] = content
            return

        combined = ""
        if reasoning:
            if self.reasoning_open:
                combined = reasoning
            else:
                combined = f"{THINK_OPEN}{reasoning}"
                self.reasoning_open = True
        if content:
            if self.reasoning_open:
                combined += f"{THINK_CLOSE}{content}"
                self.reasoning_open = False
            else:
                combined += content
        if combined:
            delta["content"] = combined


def _stream_error_sse_chunk(message: str, code: int = 500) -> bytes:
    """SSE chunk 携带上游失败原因，兼容 error.message / error.code 解析。"""
    detail = (message or "upstream_error").strip() or "upstream_error"
    return _sse_event(
        {
            "error": {
                "message": detail,
                "type": "invalid_request_error",
                "code": code,
            }
        }
    )


def _stream_done_sse_chunk() -> bytes:
    return _sse_frame(f"data: {SSE_DONE_TOKEN}")


def _build_streaming_response(
    generator: Iterable[bytes] | AsyncIterable[bytes],
    background: BackgroundTask | None = None,
) -> StreamingResponse:
    return StreamingResponse(
        generator,
        background=background,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
