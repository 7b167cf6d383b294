"""Terminal request errors and their HTTP representations."""

from typing import Optional

from cors_proxy.core.models import ProxyResponse


class ProxyError(Exception):
    """Base class for errors that end a proxied request.

    Every subclass maps to exactly one status code and is surfaced to the
    caller as ``{"error": "<message>"}``. None of them are retried.
    """

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_response(self) -> ProxyResponse:
        return ProxyResponse.json(self.status_code, {"error": self.message})


class InputError(ProxyError):
    """Missing or malformed ``url`` query parameter."""

    status_code = 400


class SafetyRejection(ProxyError):
    """Target URL has a disallowed scheme or hostname, or does not parse."""

    status_code = 400


class RateLimitExceeded(ProxyError):
    """Client went over its request budget for the current window."""

    status_code = 429

    def __init__(self, message: str, retry_after: Optional[int] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after

    def to_response(self) -> ProxyResponse:
        response = super().to_response()
        if self.retry_after is not None:
            response.set_header("Retry-After", str(self.retry_after))
        return response


class UpstreamFailure(ProxyError):
    """The upstream fetch raised (network error, DNS failure, timeout)."""

    status_code = 500


class RouteNotFound(ProxyError):
    """Request path is neither ``/`` nor ``/proxy``."""

    status_code = 404

    def __init__(self, message: str = "Not Found") -> None:
        super().__init__(message)

    def to_response(self) -> ProxyResponse:
        return ProxyResponse.text(self.status_code, self.message)
