"""Threaded HTTP server for CORS Proxy Buddy."""

import threading
from http.server import ThreadingHTTPServer

from cors_proxy.utils.logger import get_logger

logger = get_logger("core.server")


class ThreadedHTTPServer(ThreadingHTTPServer):
    """Thread-per-request HTTP server bound to one dispatcher."""

    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, server_address, RequestHandlerClass, dispatcher):
        self.dispatcher = dispatcher

        def handler(*args, **kwargs):
            return RequestHandlerClass(*args, dispatcher=dispatcher, **kwargs)

        super().__init__(server_address, handler)
        self._run_thread = None

    def start(self, blocking=True):
        if blocking:
            logger.info("Starting server in blocking mode...")
            self.serve_forever()
        else:
            logger.info("Starting server in non-blocking mode...")
            self._run_thread = threading.Thread(target=self.serve_forever, daemon=True)
            self._run_thread.start()
            logger.info("Server started.")

    def stop(self):
        logger.info("Stopping server...")
        self.shutdown()
        self.server_close()
        if self._run_thread:
            self._run_thread.join()
        logger.info("Server stopped.")
