"""FastAPI app entry."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from nimrelay.adapters.openai_compat.mapper import to_error_body
from nimrelay.adapters.openai_compat.router import router as openai_router
from nimrelay.adapters.openai_compat.upstream import _normalize_upstream_base, close_upstream_async_client
from nimrelay.config.feature_flags import relay_options
from nimrelay.config.settings import settings
from nimrelay.core.errors import ConfigurationError
from nimrelay.util.logger import logger

_BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})
_ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]

app = FastAPI(title=settings.app_name)


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=to_error_body(message, status_code))


def _cors_origins() -> list[str]:
    origins = [item.strip() for item in settings.cors_allow_origins.split(",") if item.strip()]
    return origins or ["*"]


@app.middleware("http")
async def request_body_limit_middleware(request: Request, call_next):
    limit = settings.max_request_body_bytes
    if limit > 0 and request.method.upper() in _BODY_METHODS:
        content_length_header = request.headers.get("content-length", "").strip()
        if content_length_header:
            try:
                content_length = int(content_length_header)
            except ValueError:
                logger.warning("reject invalid content-length path=%s", request.url.path)
                return _error_response(400, "Invalid Content-Length header")
            if content_length > limit:
                logger.warning(
                    "reject oversize request content_length=%s max=%s path=%s",
                    content_length,
                    limit,
                    request.url.path,
                )
                return _error_response(413, "Request entity too large")
        else:
            body = await request.body()
            if len(body) > limit:
                logger.warning(
                    "reject oversize request actual_size=%s max=%s path=%s",
                    len(body),
                    limit,
                    request.url.path,
                )
                return _error_response(413, "Request entity too large")
    return await call_next(request)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning("invalid request body path=%s errors=%s", request.url.path, exc.errors())
    return _error_response(400, "Invalid request body: expected a JSON object")


@app.get("/health")
def health() -> dict:
    logger.debug("health check")
    return {
        "status": "ok",
        "service": settings.service_name,
        "reasoning_display": relay_options.show_reasoning,
        "thinking_mode": relay_options.thinking_mode,
    }


app.include_router(openai_router, prefix="/v1")


# 必须最后注册：未匹配的 path/method 统一返回 OpenAI 风格 404
@app.api_route("/{path:path}", methods=_ALL_METHODS, include_in_schema=False)
async def endpoint_not_found(path: str, request: Request) -> JSONResponse:
    return _error_response(404, f"Endpoint {request.url.path} not found")


@app.on_event("startup")
async def startup_checks() -> None:
    try:
        _normalize_upstream_base(settings.upstream_base_url)
    except ValueError as exc:
        logger.error("invalid upstream base url=%s error=%s", settings.upstream_base_url, exc)
        raise ConfigurationError(f"invalid upstream base url: {exc}") from exc
    if not settings.upstream_api_key:
        logger.warning("upstream api key is empty; upstream calls will likely be rejected")
    logger.info("%s running on port %s", settings.service_name, settings.port)
    logger.info("health check: http://localhost:%s/health", settings.port)
    logger.info("reasoning display: %s", "ENABLED" if relay_options.show_reasoning else "DISABLED")
    logger.info("thinking mode: %s", "ENABLED" if relay_options.thinking_mode else "DISABLED")


@app.on_event("shutdown")
async def shutdown_cleanup() -> None:
    await close_upstream_async_client()


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_methods=["*"],
    allow_headers=["*"],
)


def main() -> None:
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
