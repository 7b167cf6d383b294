"""CORS Proxy Buddy - Forwarding HTTP proxy with CORS headers.

Lets browser clients fetch third-party resources that do not grant
cross-origin access, with per-client rate limiting, loopback target
rejection, and short-lived caching of successful GET responses.
"""

from cors_proxy.cache.engine import ResponseCache
from cors_proxy.core.dispatcher import ProxyDispatcher
from cors_proxy.core.proxy import CorsProxy
from cors_proxy.security.manager import SafetyValidator, is_safe_target
from cors_proxy.throttling.manager import RateLimiter

__version__ = "0.1.0"

__all__ = [
    "CorsProxy",
    "ProxyDispatcher",
    "RateLimiter",
    "ResponseCache",
    "SafetyValidator",
    "is_safe_target",
]
