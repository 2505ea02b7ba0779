"""Project error hierarchy."""

from __future__ import annotations


class NimRelayError(Exception):
    """Base error."""


class ConfigurationError(NimRelayError):
    """Raised when startup configuration cannot be loaded."""


class UpstreamError(NimRelayError):
    """Raised when the upstream call fails before any response bytes are sent."""

    def __init__(self, detail: str, status_code: int = 500) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


class UpstreamHTTPError(UpstreamError):
    """Upstream answered with a non-2xx status."""


class UpstreamUnreachableError(UpstreamError):
    """Connection failure or timeout talking to the upstream."""
