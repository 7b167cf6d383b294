"""HTTP request handler that feeds requests into the ProxyDispatcher."""

from http.server import BaseHTTPRequestHandler

from cors_proxy.core.models import ProxyResponse
from cors_proxy.utils.logger import get_logger


class CorsProxyRequestHandler(BaseHTTPRequestHandler):
    """Adapts ``http.server`` requests to the transport-independent dispatcher."""

    server_version = "CORSProxyBuddy/1.0"

    def __init__(self, *args, dispatcher=None, **kwargs):
        self.dispatcher = dispatcher
        super().__init__(*args, **kwargs)

    @property
    def logger(self):
        return get_logger("core.handler")

    def do_GET(self):
        self._handle_request("GET")

    def do_HEAD(self):
        self._handle_request("HEAD")

    def do_POST(self):
        self._handle_request("POST")

    def do_PUT(self):
        self._handle_request("PUT")

    def do_PATCH(self):
        self._handle_request("PATCH")

    def do_DELETE(self):
        self._handle_request("DELETE")

    def do_OPTIONS(self):
        self._handle_request("OPTIONS")

    def _read_body(self) -> bytes:
        """Read the whole request body as announced by Content-Length."""
        length = int(self.headers.get("Content-Length") or 0)
        if length <= 0:
            return b""
        return self.rfile.read(length)

    def _handle_request(self, method: str):
        self.logger.debug(f"Handling {method} request for path: {self.path}")
        try:
            headers = {key: value for key, value in self.headers.items()}
            response = self.dispatcher.dispatch(method, self.path, headers, self._read_body)
        except Exception as e:
            self.logger.error(f"Exception while handling request: {e}", exc_info=True)
            response = ProxyResponse.json(500, {"error": "Internal server error"})
        self._send(method, response)

    def _send(self, method: str, response: ProxyResponse):
        # send_response() would add its own Server/Date headers on top of the upstream ones
        self.send_response_only(response.status_code)
        self.log_request(response.status_code)
        if response.get_header("date") is None:
            self.send_header("Date", self.date_time_string())
        if response.get_header("content-length") is None and method != "HEAD":
            self.send_header("Content-Length", str(len(response.data)))
        for key, value in response.headers.items():
            for item in value if isinstance(value, list) else [value]:
                self.send_header(key, item)
        self.end_headers()
        if method != "HEAD" and response.data:
            self.wfile.write(response.data)

    def log_message(self, format, *args):
        self.logger.debug("%s - %s" % (self.address_string(), format % args))
