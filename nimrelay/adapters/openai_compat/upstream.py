"""
上游 URL/鉴权头构建与 HTTP 转发（JSON、流式、模型探测）。从 router 拆出，便于维护与单测。
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncGenerator, Mapping
from urllib.parse import urlparse, urlunparse

import httpx

from nimrelay.config.settings import settings
from nimrelay.core.errors import UpstreamError, UpstreamHTTPError, UpstreamUnreachableError
from nimrelay.util.logger import logger

CHAT_COMPLETIONS_PATH = "/chat/completions"
PROBE_PROMPT = "test"

_upstream_async_client: httpx.AsyncClient | None = None
_upstream_client_lock: asyncio.Lock | None = None


def _upstream_http_limits() -> httpx.Limits:
    return httpx.Limits(
        max_connections=max(10, int(settings.upstream_max_connections)),
        max_keepalive_connections=max(5, int(settings.upstream_max_keepalive_connections)),
    )


def _upstream_http_timeout() -> httpx.Timeout:
    timeout = float(settings.upstream_timeout_seconds)
    return httpx.Timeout(connect=timeout, read=timeout, write=timeout, pool=timeout)


async def _get_upstream_async_client() -> httpx.AsyncClient:
    global _upstream_async_client, _upstream_client_lock
    if _upstream_async_client is not None:
        return _upstream_async_client
    if _upstream_client_lock is None:
        _upstream_client_lock = asyncio.Lock()
    async with _upstream_client_lock:
        if _upstream_async_client is None:
            _upstream_async_client = httpx.AsyncClient(
                http2=False,
                timeout=_upstream_http_timeout(),
                limits=_upstream_http_limits(),
            )
    return _upstream_async_client


async def close_upstream_async_client() -> None:
    global _upstream_async_client
    if _upstream_async_client is not None:
        await _upstream_async_client.aclose()
        _upstream_async_client = None


def _normalize_upstream_base(raw_base: str) -> str:
    candidate = raw_base.strip()
    parsed = urlparse(candidate)
    if parsed.scheme not in {"http", "https"}:
        raise ValueError("invalid_upstream_scheme")
    if not parsed.netloc:
        raise ValueError("invalid_upstream_host")
    if parsed.query or parsed.fragment:
        raise ValueError("invalid_upstream_query_fragment")
    cleaned_path = parsed.path.rstrip("/")
    return urlunparse((parsed.scheme, parsed.netloc, cleaned_path, "", "", ""))


def _build_upstream_url(upstream_base: str, route_path: str = CHAT_COMPLETIONS_PATH) -> str:
    if not route_path.startswith("/"):
        route_path = f"/{route_path}"
    return f"{_normalize_upstream_base(upstream_base)}{route_path}"


def _build_upstream_headers(api_key: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }


def _decode_json_or_text(body: bytes) -> dict[str, Any] | str:
    text = body.decode("utf-8", errors="replace")
    if not text:
        return ""
    try:
        parsed = json.loads(text)
        if isinstance(parsed, dict):
            return parsed
        return text
    except (ValueError, RecursionError):
        return text


def _safe_error_detail(payload: dict[str, Any] | str) -> str:
    if isinstance(payload, str):
        return payload[:600]
    error = payload.get("error")
    if isinstance(error, str):
        return error[:600]
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"][:600]
    for key in ("detail", "message"):
        if isinstance(payload.get(key), str):
            return payload[key][:600]
    return json.dumps(payload, ensure_ascii=False)[:600]


def _http_error_message(status_code: int, payload: dict[str, Any] | str) -> str:
    detail = _safe_error_detail(payload).strip()
    if detail:
        return f"Request failed with status code {status_code}: {detail}"
    return f"Request failed with status code {status_code}"


def _unreachable_detail(exc: httpx.HTTPError) -> str:
    return (str(exc) or "").strip() or exc.__class__.__name__ or "connection_failed_or_timeout"


async def _forward_json(url: str, payload: dict[str, Any], headers: Mapping[str, str]) -> dict[str, Any]:
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    logger.debug("forward_json start url=%s payload_bytes=%d", url, len(body))
    client = await _get_upstream_async_client()
    try:
        response = await client.post(url=url, content=body, headers=dict(headers))
    except httpx.HTTPError as exc:
        detail = _unreachable_detail(exc)
        logger.warning("forward_json http_error url=%s error=%s", url, detail)
        raise UpstreamUnreachableError(f"upstream_unreachable: {detail}") from exc

    logger.debug("forward_json done url=%s status=%s", url, response.status_code)
    decoded = _decode_json_or_text(response.content)
    if not response.is_success:
        raise UpstreamHTTPError(_http_error_message(response.status_code, decoded), status_code=response.status_code)
    if not isinstance(decoded, dict):
        raise UpstreamError(f"upstream_invalid_response: {_safe_error_detail(decoded) or 'empty body'}")
    return decoded


async def _open_upstream_stream(url: str, payload: dict[str, Any], headers: Mapping[str, str]) -> httpx.Response:
    """Send the request and wait for response headers; the body is left unread."""
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    logger.debug("forward_stream start url=%s payload_bytes=%d", url, len(body))
    client = await _get_upstream_async_client()
    request = client.build_request("POST", url=url, content=body, headers=dict(headers))
    try:
        response = await client.send(request, stream=True)
    except httpx.HTTPError as exc:
        detail = _unreachable_detail(exc)
        logger.warning("forward_stream http_error url=%s error=%s", url, detail)
        raise UpstreamUnreachableError(f"upstream_unreachable: {detail}") from exc

    logger.debug("forward_stream connected url=%s status=%s", url, response.status_code)
    if not response.is_success:
        try:
            decoded = _decode_json_or_text(await response.aread())
        finally:
            await response.aclose()
        raise UpstreamHTTPError(_http_error_message(response.status_code, decoded), status_code=response.status_code)
    return response


async def _iter_upstream_bytes(response: httpx.Response) -> AsyncGenerator[bytes, None]:
    """Yield raw body chunks as delivered; chunk boundaries are not line-aligned."""
    try:
        async for chunk in response.aiter_bytes():
            if chunk:
                yield chunk
    except httpx.HTTPError as exc:
        detail = _unreachable_detail(exc)
        raise UpstreamUnreachableError(f"upstream_stream_interrupted: {detail}") from exc
    finally:
        await response.aclose()


async def _probe_model(url: str, model: str, headers: Mapping[str, str]) -> bool:
    """Single-token completion against ``model``; True only on a 2xx answer."""
    payload = {
        "model": model,
        "messages": [{"role": "user", "content": PROBE_PROMPT}],
        "max_tokens": 1,
    }
    client = await _get_upstream_async_client()
    try:
        response = await client.post(
            url=url,
            json=payload,
            headers=dict(headers),
            timeout=float(settings.probe_timeout_seconds),
        )
    except httpx.HTTPError as exc:
        logger.debug("model probe failed model=%s error=%s", model, _unreachable_detail(exc))
        return False
    logger.debug("model probe done model=%s status=%s", model, response.status_code)
    return response.is_success
