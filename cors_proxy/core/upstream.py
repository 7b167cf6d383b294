"""Outbound HTTP fetches for the forwarding proxy."""

import gzip
import http.client
import time
import urllib.error
import urllib.request
import zlib
from typing import Dict, List, Mapping, Optional, Union

from cors_proxy.core.errors import UpstreamFailure
from cors_proxy.core.models import ProxyResponse
from cors_proxy.utils.logger import get_logger

# Request headers that describe the inbound hop or are recomputed by urllib
SKIPPED_REQUEST_HEADERS = frozenset(
    [
        "host",
        "connection",
        "content-length",
        "transfer-encoding",
        "keep-alive",
        "te",
        "upgrade",
        "proxy-connection",
        "accept-encoding",
    ]
)
SUPPORTED_ENCODINGS = ("gzip", "x-gzip", "deflate")


class UpstreamClient:
    """Performs the upstream request for a proxied call.

    Redirects are followed by urllib's default opener. A non-2xx reply from
    the upstream is returned as a normal response; transport failures and
    bodies that cannot be decoded raise ``UpstreamFailure``.
    """

    def __init__(self, timeout: float = 30, opener: Optional[urllib.request.OpenerDirector] = None) -> None:
        self.timeout = timeout
        self.opener = opener or urllib.request.build_opener()
        self.logger = get_logger("core.upstream")

    def fetch(
        self,
        method: str,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Optional[bytes] = None,
    ) -> ProxyResponse:
        """Forward a request to ``url`` and return the buffered response.

        Args:
            method: HTTP method of the inbound request
            url: Validated target URL
            headers: Inbound request headers
            body: Fully buffered request body, None for GET/HEAD

        Raises:
            UpstreamFailure: On network, DNS, timeout or protocol errors, and on
                an unsupported or corrupt ``Content-Encoding``
        """
        start_time = time.time()
        req = urllib.request.Request(url, data=body, method=method)
        for key, value in (headers or {}).items():
            if key.lower() not in SKIPPED_REQUEST_HEADERS:
                req.add_header(key, value)
        # Only encodings we can decode before re-serving
        req.add_header("Accept-Encoding", "gzip, deflate")

        self.logger.debug(f"Making {method} request to {url} with timeout={self.timeout}")
        try:
            with self.opener.open(req, timeout=self.timeout) as response:
                data = response.read()
                status_code = response.getcode()
                response_headers = response.headers
        except urllib.error.HTTPError as e:
            # The upstream answered; pass its status and body through
            try:
                data = e.read()
            except (OSError, http.client.HTTPException):
                data = b""
            finally:
                e.close()
            status_code = e.code
            response_headers = e.headers
            self.logger.debug(f"Upstream {url} answered with HTTP {e.code}")
        except urllib.error.URLError as e:
            self.logger.error(f"Network error accessing upstream {url}: {e.reason}")
            raise UpstreamFailure(str(e.reason) or "Unknown error") from e
        except (OSError, http.client.HTTPException, ValueError) as e:
            self.logger.error(f"Failed to forward request to {url}: {e}")
            raise UpstreamFailure(str(e) or "Unknown error") from e

        response_time_ms = int((time.time() - start_time) * 1000)
        self.logger.debug(f"Received response from {url}: {status_code} in {response_time_ms}ms")
        return self._build_response(url, status_code, response_headers, data)

    def _build_response(self, url: str, status_code: int, raw_headers, data: bytes) -> ProxyResponse:
        headers = self._collect_headers(raw_headers)
        encoding = headers.pop("content-encoding", "").strip().lower()
        if encoding and encoding != "identity":
            if encoding not in SUPPORTED_ENCODINGS:
                self.logger.error(f"Unsupported content-encoding {encoding!r} from {url}")
                raise UpstreamFailure(f"Unsupported content-encoding: {encoding}")
            if data:
                try:
                    data = self._decode_body(encoding, data)
                except (gzip.BadGzipFile, zlib.error, OSError, EOFError) as e:
                    self.logger.error(f"Failed to decode {encoding} body for {url}: {e}")
                    raise UpstreamFailure(f"Failed to decode {encoding} response body") from e
                headers["content-length"] = str(len(data))
                self.logger.debug(f"Decoded {encoding} body for {url} ({len(data)} bytes)")
            else:
                # HEAD and empty replies: the encoded length says nothing about the decoded body
                headers.pop("content-length", None)
        return ProxyResponse(status_code=status_code, headers=headers, data=data)

    @staticmethod
    def _decode_body(encoding: str, data: bytes) -> bytes:
        if encoding in ("gzip", "x-gzip"):
            return gzip.decompress(data)
        try:
            return zlib.decompress(data)
        except zlib.error:
            # Some servers send raw deflate without the zlib wrapper
            return zlib.decompress(data, -zlib.MAX_WBITS)

    @staticmethod
    def _collect_headers(raw_headers) -> Dict[str, Union[str, List[str]]]:
        """Lower-case header names, joining repeated headers with ', '.

        ``Set-Cookie`` values cannot be comma-joined, so they are kept as a list.
        """
        headers: Dict[str, Union[str, List[str]]] = {}
        if raw_headers is None:
            return headers
        for key, value in raw_headers.items():
            name = key.lower()
            if name == "set-cookie":
                headers.setdefault(name, []).append(value)
            elif name in headers:
                headers[name] = f"{headers[name]}, {value}"
            else:
                headers[name] = value
        return headers
