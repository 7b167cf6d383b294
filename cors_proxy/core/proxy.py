import threading
import time
from collections import deque
from typing import Any, Deque, Dict, Optional, Tuple

from cors_proxy.cache.engine import ResponseCache
from cors_proxy.core.config import ConfigurationManager
from cors_proxy.core.dispatcher import ProxyDispatcher
from cors_proxy.core.upstream import UpstreamClient
from cors_proxy.security.manager import SafetyValidator
from cors_proxy.throttling.manager import RateLimiter
from cors_proxy.utils.logger import configure_logging, get_logger


class CorsProxy:
    """Main entry point for the CORS proxy module.

    Builds one rate limiter, safety validator, response cache and upstream
    client per instance and shares them across all request threads of the
    server it runs.

    Example:
        Basic usage:

        >>> proxy = CorsProxy({"server": {"port": 8080}})
        >>> proxy.start(blocking=False)
        >>> # GET http://127.0.0.1:8080/proxy?url=https://example.com
        >>> proxy.stop()

        Using as context manager:

        >>> with CorsProxy({"server": {"port": 0}}) as proxy:
        ...     host, port = proxy.get_address()
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        """Initialize the proxy with configuration and all components.

        Args:
            config: Configuration dictionary with server, security, cache,
                throttling and logging sections; missing keys use defaults

        Raises:
            ValueError: If configuration is invalid
        """
        self.config_manager = ConfigurationManager(config or {})
        self.config = self.config_manager.config
        configure_logging(self.config["logging"])
        self.logger = get_logger("core.proxy")
        self._build_components()
        self.server: Optional[Any] = None
        self.running = False
        self.start_time: Optional[float] = None

    def _build_components(self) -> None:
        cache_cfg = self.config["cache"]
        self.safety_validator = SafetyValidator(self.config["security"])
        self.rate_limiter = RateLimiter(self.config["throttling"])
        self.response_cache = ResponseCache(
            max_entries=cache_cfg["max_entries"],
            ttl_seconds=cache_cfg["ttl_seconds"],
            max_response_size=cache_cfg["max_cache_response_size"],
        )
        self.upstream = UpstreamClient(timeout=self.config["server"]["request_timeout"])
        self.metrics_collector = MetricsCollector()
        self.dispatcher = ProxyDispatcher(
            rate_limiter=self.rate_limiter,
            safety_validator=self.safety_validator,
            response_cache=self.response_cache,
            upstream=self.upstream,
            config=self.config,
            metrics_collector=self.metrics_collector,
        )

    def start(self, blocking: bool = False) -> None:
        """Start the proxy server.

        Args:
            blocking: If True, blocks until server stops. If False,
                     starts server in background thread.

        Raises:
            RuntimeError: If server is already running
            OSError: If unable to bind to specified host/port
        """
        from cors_proxy.core.handler import CorsProxyRequestHandler
        from cors_proxy.core.server import ThreadedHTTPServer

        if self.running:
            raise RuntimeError("Server is already running")

        host = self.config["server"]["host"]
        port = self.config["server"]["port"]
        if self.server is None:
            self.server = ThreadedHTTPServer((host, port), CorsProxyRequestHandler, self.dispatcher)
        self.running = True
        self.start_time = time.time()
        bound_host, bound_port = self.get_address()
        self.logger.info(f"Proxy server starting on {bound_host}:{bound_port} (blocking={blocking})")
        self.server.start(blocking=blocking)

    def stop(self) -> None:
        """Stop the proxy server.

        This method is safe to call multiple times.
        """
        if self.server:
            self.server.stop()
            self.server = None
        self.running = False
        self.logger.info("Proxy server stopped.")

    def is_running(self) -> bool:
        return self.running

    def get_address(self) -> Tuple[str, int]:
        """Return the bound (host, port), or the configured one before start."""
        if self.server is not None:
            host, port = self.server.server_address[:2]
            return host, port
        return self.config["server"]["host"], self.config["server"]["port"]

    def get_metrics(self) -> Dict[str, Any]:
        """Return request counters plus cache and rate limiter statistics."""
        metrics = self.metrics_collector.get_metrics()
        metrics["cache"] = self.response_cache.get_cache_performance()
        metrics["throttling"] = self.rate_limiter.get_stats()
        return metrics

    def clear_cache(self) -> int:
        """Clear all cache entries. Returns the number of entries removed."""
        self.logger.info("Clearing response cache")
        return self.response_cache.clear()

    def __enter__(self) -> "CorsProxy":
        """Enter context manager and start the proxy server."""
        self.start(blocking=False)
        return self

    def __exit__(self, exc_type: Optional[type], exc_val: Optional[Exception], exc_tb: Optional[Any]) -> None:
        """Exit context manager and stop the proxy server."""
        self.stop()


class MetricsCollector:
    """Collects proxy request events.

    Thread-safe for concurrent request handling. Only the most recent
    ``max_events`` events are kept.
    """

    COUNTERS = {
        "cache_hit": "cache_hits",
        "cache_miss": "cache_misses",
        "rate_limited": "rate_limited",
        "rejected": "rejected",
        "error": "errors",
    }

    def __init__(self, max_events: int = 100) -> None:
        self._lock = threading.Lock()
        self._metrics = {
            "total_requests": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "rate_limited": 0,
            "rejected": 0,
            "errors": 0,
            "start_time": time.time(),
        }
        self._events: Deque[Tuple[str, Dict[str, Any]]] = deque(maxlen=max_events)

    def record_event(self, event_type: str, details: Optional[Dict[str, Any]] = None) -> None:
        """Record a proxy event.

        Args:
            event_type: One of "cache_hit", "cache_miss", "forward",
                "rate_limited", "rejected" or "error"
            details: Additional event details dictionary
        """
        with self._lock:
            # "error" follows a "cache_miss"/"forward" event for the same request
            if event_type != "error":
                self._metrics["total_requests"] += 1
            counter = self.COUNTERS.get(event_type)
            if counter:
                self._metrics[counter] += 1
            self._events.append((event_type, details or {}))

    def get_metrics(self) -> Dict[str, Any]:
        with self._lock:
            m: Dict[str, Any] = dict(self._metrics)
            m["events"] = [{"event_type": event_type, "details": details} for event_type, details in self._events]
        m["uptime_seconds"] = time.time() - m["start_time"]
        return m
