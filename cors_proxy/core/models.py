"""Response models for CORS Proxy Buddy."""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

HeaderValue = Union[str, List[str]]


@dataclass
class ProxyResponse:
    """A fully buffered HTTP response.

    Header names are kept lower-case so lookups are case-insensitive. A header
    sent more than once that cannot be comma-joined (``set-cookie``) holds a
    list of values. The body is an immutable ``bytes`` buffer, so a copy only
    needs fresh header containers to be independently consumable.
    """

    status_code: int
    headers: Dict[str, HeaderValue] = field(default_factory=dict)
    data: bytes = b""

    def __post_init__(self):
        self.headers = {k.lower(): v for k, v in self.headers.items()}
        self.data = bytes(self.data or b"")

    def copy(self) -> "ProxyResponse":
        headers = {k: list(v) if isinstance(v, list) else v for k, v in self.headers.items()}
        return ProxyResponse(self.status_code, headers, self.data)

    def get_header(self, name: str, default: Optional[HeaderValue] = None) -> Optional[HeaderValue]:
        return self.headers.get(name.lower(), default)

    def set_header(self, name: str, value: str) -> None:
        self.headers[name.lower()] = value

    def remove_header(self, name: str) -> None:
        self.headers.pop(name.lower(), None)

    @classmethod
    def text(cls, status_code: int, body: str, content_type: str = "text/plain;charset=UTF-8") -> "ProxyResponse":
        return cls(status_code, {"content-type": content_type}, body.encode("utf-8"))

    @classmethod
    def json(cls, status_code: int, payload: Dict[str, Any]) -> "ProxyResponse":
        body = json.dumps(payload, separators=(",", ":"))
        return cls(status_code, {"content-type": "application/json"}, body.encode("utf-8"))


@dataclass
class CacheEntry:
    """A cached response snapshot and the time it was stored."""

    response: ProxyResponse
    created_at: float

    def is_expired(self, now: float, ttl_seconds: float) -> bool:
        return now > self.created_at + ttl_seconds
