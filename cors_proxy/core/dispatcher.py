"""Request orchestration for the forwarding proxy."""

from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import parse_qs, urlsplit

from cors_proxy.cache.engine import ResponseCache
from cors_proxy.core.errors import (
    InputError,
    ProxyError,
    RateLimitExceeded,
    RouteNotFound,
    SafetyRejection,
    UpstreamFailure,
)
from cors_proxy.core.models import ProxyResponse
from cors_proxy.security.manager import SafetyValidator
from cors_proxy.throttling.manager import RateLimiter
from cors_proxy.utils.logger import get_logger

STATUS_TEXT = "CORS Proxy active"
UNKNOWN_CLIENT = "unknown"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,POST,PUT,DELETE,OPTIONS",
}
# Hop-by-hop headers of the buffered upstream response
STRIPPED_RESPONSE_HEADERS = ("content-encoding", "transfer-encoding", "connection")
CACHE_HEADER = "x-cache"
PROVENANCE_HEADER = "x-proxied-by"


class ProxyDispatcher:
    """Turns one inbound request into one response.

    Steps run strictly in order: route, read ``url``, rate check, safety
    check, cache lookup (GET only), upstream fetch, header rewrite, cache
    store (GET + 200 only). Each failure is terminal and is never retried.

    The rate limiter, validator, cache and upstream client are injected so a
    process can share one of each across request threads, and tests can use
    fresh instances.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        safety_validator: SafetyValidator,
        response_cache: ResponseCache,
        upstream,
        config: Optional[Dict[str, Any]] = None,
        metrics_collector=None,
    ) -> None:
        """Initialize the dispatcher with its collaborators.

        Args:
            rate_limiter: Per-client request limiter
            safety_validator: Target URL validator
            response_cache: Snapshot cache for GET 200 responses
            upstream: Object with ``fetch(method, url, headers, body)``
            config: Full proxy configuration dictionary
            metrics_collector: Optional collector with ``record_event``
        """
        self.rate_limiter = rate_limiter
        self.safety_validator = safety_validator
        self.response_cache = response_cache
        self.upstream = upstream
        self.config = config or {}
        self.metrics_collector = metrics_collector
        server_cfg = self.config.get("server", {})
        self.client_ip_header = server_cfg.get("client_ip_header", "CF-Connecting-IP")
        self.proxied_by = server_cfg.get("proxied_by", "CORS-Proxy-Buddy")
        self.logger = get_logger("core.dispatcher")

    def dispatch(
        self,
        method: str,
        path: str,
        headers: Optional[Mapping[str, str]] = None,
        read_body: Optional[Callable[[], bytes]] = None,
    ) -> ProxyResponse:
        """Handle a request and return the response to send.

        Args:
            method: HTTP method
            path: Request target as received (path plus query string)
            headers: Inbound request headers
            read_body: Callable returning the full request body; only
                invoked for methods other than GET and HEAD

        Returns:
            The proxied response, a cached snapshot, or an error response
        """
        method = method.upper()
        headers = headers or {}
        route = urlsplit(path)

        if route.path == "/":
            return ProxyResponse.text(200, STATUS_TEXT, content_type="text/plain")

        try:
            if route.path != "/proxy":
                raise RouteNotFound()
            return self._proxy(method, route.query, headers, read_body)
        except ProxyError as e:
            return e.to_response()

    def _proxy(
        self,
        method: str,
        query: str,
        headers: Mapping[str, str],
        read_body: Optional[Callable[[], bytes]],
    ) -> ProxyResponse:
        target = self._extract_target(query)
        client_id = self._client_id(headers)

        if self.rate_limiter.is_over_limit(client_id):
            retry_after = self.rate_limiter.get_retry_after(client_id)
            self._record("rate_limited", {"client": client_id, "retry_after": retry_after})
            self._log_security_event("rate_limited", {"client": client_id, "target": target})
            raise RateLimitExceeded("Rate limit exceeded", retry_after=retry_after)

        if not self.safety_validator.is_safe_target(target):
            self._record("rejected", {"client": client_id, "target": target})
            self._log_security_event("unsafe_target", {"client": client_id, "target": target})
            raise SafetyRejection("Unsafe or invalid URL")

        if method == "GET":
            cached = self.response_cache.lookup(target)
            if cached is not None:
                self.logger.info(f"Cache hit for {target}")
                self._record("cache_hit", {"target": target})
                cached.set_header(CACHE_HEADER, "HIT")
                return cached
            self.logger.debug(f"Cache miss for {target}")
            self._record("cache_miss", {"target": target})
        else:
            self._record("forward", {"target": target, "method": method})

        try:
            body = None
            if method not in ("GET", "HEAD"):
                body = read_body() if read_body is not None else b""
            upstream_response = self.upstream.fetch(method, target, headers, body)
        except Exception as e:
            message = (e.message if isinstance(e, UpstreamFailure) else str(e)) or "Unknown error"
            self.logger.error(f"Upstream {method} {target} failed: {message}")
            self._record("error", {"target": target, "error": message})
            raise UpstreamFailure(message) from e

        response = self._rewrite_headers(upstream_response)

        if method == "GET" and response.status_code == 200:
            self.response_cache.store(target, response)

        return response

    def _extract_target(self, query: str) -> str:
        values = parse_qs(query, keep_blank_values=True).get("url")
        if not values or not values[0]:
            raise InputError("Missing ?url=")
        return values[0]

    def _client_id(self, headers: Mapping[str, str]) -> str:
        wanted = self.client_ip_header.lower()
        for key, value in headers.items():
            if key.lower() == wanted and value:
                return value
        return UNKNOWN_CLIENT

    def _rewrite_headers(self, upstream_response: ProxyResponse) -> ProxyResponse:
        response = upstream_response.copy()
        for name, value in CORS_HEADERS.items():
            response.set_header(name, value)
        response.set_header(PROVENANCE_HEADER, self.proxied_by)
        for name in STRIPPED_RESPONSE_HEADERS:
            response.remove_header(name)
        return response

    def _record(self, event_type: str, details: Dict[str, Any]) -> None:
        if self.metrics_collector is not None:
            self.metrics_collector.record_event(event_type, details)

    def _log_security_event(self, event_type: str, details: Dict[str, Any]) -> None:
        """Log security event if enabled in configuration."""
        if self.config.get("security", {}).get("log_security_events", True):
            self.logger.info(f"[SECURITY] {event_type}: {details}")
