"""Integration tests: a live CorsProxy in front of a local upstream server."""

import os
import sys

# Add the project root to the path to import modules
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent.parent.absolute()
sys.path.append(str(PROJECT_ROOT))

import gzip
import json
import socket
import threading
import time
import urllib.request
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
import requests

from cors_proxy.core.proxy import CorsProxy


class UpstreamHandler(BaseHTTPRequestHandler):
    """Small origin server that counts hits per path."""

    hits = {}
    hits_lock = threading.Lock()

    def _count(self):
        path = self.path.split("?")[0]
        with self.hits_lock:
            self.hits[path] = self.hits.get(path, 0) + 1

    def _reply(self, status, body, content_type="application/json", extra_headers=None):
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        for key, value in (extra_headers or {}).items():
            self.send_header(key, value)
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(body)

    def do_GET(self):
        self._count()
        path = self.path.split("?")[0]
        if path == "/data":
            self._reply(200, b'{"value":42}')
        elif path == "/gzip":
            self._reply(200, gzip.compress(b"compressed payload"), "text/plain", {"Content-Encoding": "gzip"})
        elif path == "/badgzip":
            self._reply(200, b"\x1f\x8b\x08\x00garbage", "text/plain", {"Content-Encoding": "gzip"})
        elif path == "/cookies":
            self.send_response(200)
            self.send_header("Set-Cookie", "a=1; Expires=Wed, 21 Oct 2026 07:28:00 GMT")
            self.send_header("Set-Cookie", "b=2; Path=/")
            self.send_header("Content-Length", "0")
            self.end_headers()
        elif path == "/redirect":
            self._reply(302, b"", "text/plain", {"Location": "/data"})
        elif path == "/headers":
            self._reply(200, json.dumps({k.lower(): v for k, v in self.headers.items()}).encode())
        elif path == "/slow":
            time.sleep(2)
            self._reply(200, b"late")
        else:
            self._reply(404, b'{"message":"missing"}')

    def do_HEAD(self):
        self.do_GET()

    def do_POST(self):
        self._count()
        length = int(self.headers.get("Content-Length") or 0)
        body = self.rfile.read(length)
        self._reply(200, json.dumps({"method": "POST", "body": body.decode()}).encode())

    def do_DELETE(self):
        self._count()
        self._reply(200, b'{"deleted":true}')

    def log_message(self, format, *args):
        pass


@pytest.fixture(scope="module")
def upstream():
    server = ThreadingHTTPServer(("127.0.0.1", 0), UpstreamHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}"
    server.shutdown()
    server.server_close()


@pytest.fixture(autouse=True)
def reset_hits():
    UpstreamHandler.hits.clear()


def start_proxy(config):
    base = {
        "server": {"host": "127.0.0.1", "port": 0, "request_timeout": 5, "proxied_by": "Integration-Proxy"},
        "logging": {"level": "WARNING", "enable_console": False},
    }
    for key, value in config.items():
        base.setdefault(key, {}).update(value)
    proxy = CorsProxy(base)
    # Talk to the local upstream directly even if the environment sets HTTP_PROXY
    proxy.upstream.opener = urllib.request.build_opener(urllib.request.ProxyHandler({}))
    proxy.start(blocking=False)
    return proxy


@pytest.fixture
def proxy():
    # The upstream runs on 127.0.0.1, so loopback must not be blocked here
    proxy = start_proxy({"security": {"blocked_hosts": []}})
    yield proxy
    proxy.stop()


@pytest.fixture
def client(proxy):
    host, port = proxy.get_address()
    session = requests.Session()
    session.trust_env = False
    session.base_url = f"http://{host}:{port}"
    yield session
    session.close()


def proxied(client, target, method="GET", **kwargs):
    return client.request(method, f"{client.base_url}/proxy", params={"url": target}, timeout=10, **kwargs)


def test_status_route(client):
    response = client.get(f"{client.base_url}/", timeout=5)
    assert response.status_code == 200
    assert response.text == "CORS Proxy active"


def test_unknown_route(client):
    response = client.get(f"{client.base_url}/nope", timeout=5)
    assert response.status_code == 404
    assert response.text == "Not Found"


def test_missing_url(client):
    response = client.get(f"{client.base_url}/proxy", timeout=5)
    assert response.status_code == 400
    assert response.content == b'{"error":"Missing ?url="}'


def test_get_is_proxied_with_cors_headers(client, upstream):
    response = proxied(client, f"{upstream}/data")
    assert response.status_code == 200
    assert response.json() == {"value": 42}
    assert response.headers["Access-Control-Allow-Origin"] == "*"
    assert response.headers["Access-Control-Allow-Methods"] == "GET,POST,PUT,DELETE,OPTIONS"
    assert response.headers["X-Proxied-By"] == "Integration-Proxy"
    assert "X-Cache" not in response.headers


def test_second_get_is_served_from_cache(client, upstream):
    first = proxied(client, f"{upstream}/data")
    second = proxied(client, f"{upstream}/data")
    assert first.status_code == second.status_code == 200
    assert second.headers["X-Cache"] == "HIT"
    assert second.json() == {"value": 42}
    assert UpstreamHandler.hits["/data"] == 1


def test_post_is_never_cached(client, upstream):
    first = proxied(client, f"{upstream}/echo", method="POST", data=b"hello")
    second = proxied(client, f"{upstream}/echo", method="POST", data=b"hello")
    assert first.json() == {"method": "POST", "body": "hello"}
    assert "X-Cache" not in second.headers
    assert UpstreamHandler.hits["/echo"] == 2


def test_upstream_error_status_is_passed_through_and_not_cached(client, upstream):
    first = proxied(client, f"{upstream}/missing")
    second = proxied(client, f"{upstream}/missing")
    assert first.status_code == 404
    assert first.json() == {"message": "missing"}
    assert "X-Cache" not in second.headers
    assert UpstreamHandler.hits["/missing"] == 2


def test_gzip_upstream_body_is_served_decoded(client, upstream):
    response = proxied(client, f"{upstream}/gzip")
    assert response.status_code == 200
    assert "Content-Encoding" not in response.headers
    assert response.content == b"compressed payload"


def test_corrupt_gzip_upstream_returns_500_and_is_not_cached(proxy, client, upstream):
    first = proxied(client, f"{upstream}/badgzip")
    second = proxied(client, f"{upstream}/badgzip")
    assert first.status_code == second.status_code == 500
    assert first.json() == {"error": "Failed to decode gzip response body"}
    assert UpstreamHandler.hits["/badgzip"] == 2
    assert len(proxy.response_cache) == 0


def test_cookies_are_relayed_separately(client, upstream):
    response = proxied(client, f"{upstream}/cookies")
    assert response.raw.headers.getlist("Set-Cookie") == ["a=1; Expires=Wed, 21 Oct 2026 07:28:00 GMT", "b=2; Path=/"]


def test_redirects_are_followed(client, upstream):
    response = proxied(client, f"{upstream}/redirect")
    assert response.status_code == 200
    assert response.json() == {"value": 42}
    assert UpstreamHandler.hits["/data"] == 1


def test_request_headers_are_forwarded(client, upstream):
    response = proxied(client, f"{upstream}/headers", headers={"X-Custom": "abc", "CF-Connecting-IP": "4.4.4.4"})
    forwarded = response.json()
    assert forwarded["x-custom"] == "abc"
    assert forwarded["accept-encoding"] == "gzip, deflate"


def test_head_returns_no_body(client, upstream):
    response = proxied(client, f"{upstream}/data", method="HEAD")
    assert response.status_code == 200
    assert response.content == b""
    assert response.headers["Access-Control-Allow-Origin"] == "*"


def test_delete_is_forwarded(client, upstream):
    response = proxied(client, f"{upstream}/item", method="DELETE")
    assert response.status_code == 200
    assert response.json() == {"deleted": True}


def test_rate_limit_per_client(client, upstream):
    headers = {"CF-Connecting-IP": "203.0.113.7"}
    statuses = [proxied(client, f"{upstream}/data", headers=headers).status_code for _ in range(11)]
    assert statuses[:10] == [200] * 10
    assert statuses[10] == 429

    limited = proxied(client, f"{upstream}/data", headers=headers)
    assert limited.json() == {"error": "Rate limit exceeded"}
    assert int(limited.headers["Retry-After"]) >= 1

    other = proxied(client, f"{upstream}/data", headers={"CF-Connecting-IP": "203.0.113.8"})
    assert other.status_code == 200


def test_connection_failure_returns_500(client):
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    closed_port = sock.getsockname()[1]
    sock.close()

    response = proxied(client, f"http://127.0.0.1:{closed_port}/")
    assert response.status_code == 500
    assert response.json()["error"]


def test_upstream_timeout_returns_500(upstream):
    proxy = start_proxy({"security": {"blocked_hosts": []}, "server": {"request_timeout": 0.5}})
    try:
        host, port = proxy.get_address()
        session = requests.Session()
        session.trust_env = False
        response = session.get(f"http://{host}:{port}/proxy", params={"url": f"{upstream}/slow"}, timeout=10)
        assert response.status_code == 500
        assert "timed out" in response.json()["error"]
    finally:
        proxy.stop()


def test_loopback_targets_blocked_by_default(upstream):
    proxy = start_proxy({})
    try:
        host, port = proxy.get_address()
        session = requests.Session()
        session.trust_env = False
        port_of_upstream = upstream.rsplit(":", 1)[1]
        aliases = [f"http://127.1:{port_of_upstream}/data", f"http://2130706433:{port_of_upstream}/data"]
        for target in [f"{upstream}/data", "http://localhost/x", "ftp://example.com"] + aliases:
            response = session.get(f"http://{host}:{port}/proxy", params={"url": target}, timeout=5)
            assert response.status_code == 400
            assert response.json() == {"error": "Unsafe or invalid URL"}
        assert UpstreamHandler.hits == {}
    finally:
        proxy.stop()


def test_metrics_reflect_traffic(proxy, client, upstream):
    proxied(client, f"{upstream}/data")
    proxied(client, f"{upstream}/data")
    metrics = proxy.get_metrics()
    assert metrics["cache_hits"] == 1
    assert metrics["cache_misses"] == 1
    assert metrics["cache"]["total_entries"] == 1
    assert metrics["throttling"]["tracked_clients"] == 1
