import logging
from http.server import BaseHTTPRequestHandler
from typing import Type

from .models import Headers, HTTPRequest, ResponseWriter
from .proxy import CachingProxy

logger = logging.getLogger(__name__)


class HandlerResponseWriter(ResponseWriter):
    """ResponseWriter on top of an http.server request handler."""

    def __init__(self, handler: BaseHTTPRequestHandler):
        self._handler = handler
        self._headers = Headers()
        self._wrote_header = False

    @property
    def headers(self) -> Headers:
        return self._headers

    def write_header(self, status_code: int, status_message: str = "") -> None:
        if self._wrote_header:
            return
        self._wrote_header = True

        # The origin's Date and Server headers are forwarded as they are
        self._handler.log_request(status_code)
        self._handler.send_response_only(status_code, status_message or None)
        for name, value in self._headers.items():
            self._handler.send_header(name, value)
        # Without a length the end of the body is the end of the connection
        if "Content-Length" not in self._headers:
            self._handler.send_header("Connection", "close")
            self._handler.close_connection = True
        self._handler.end_headers()

    def write(self, data: bytes) -> int:
        if not self._wrote_header:
            self.write_header(200, "OK")
        if self._handler.command == "HEAD":
            return 0
        self._handler.wfile.write(data)
        return len(data)


class ProxyRequestHandler(BaseHTTPRequestHandler):
    """Handles every request method by passing it through a CachingProxy."""

    proxy: CachingProxy = None
    protocol_version = "HTTP/1.1"

    def _handle(self) -> None:
        """Turn the handler's request into an HTTPRequest and serve it."""
        content_length = int(self.headers.get("Content-Length") or 0)
        body = self.rfile.read(content_length) if content_length > 0 else b""

        request = HTTPRequest(
            method=self.command,
            url=self.path,
            headers=Headers(self.headers.items()),
            protocol=self.request_version,
            body=body,
            remote_addr=self.client_address,
        )

        try:
            self.proxy.serve_http(HandlerResponseWriter(self), request)
            self.wfile.flush()
        except (ConnectionResetError, BrokenPipeError) as e:
            logger.error(f"Connection error while sending response: {e}")
            self.close_connection = True

    do_GET = _handle
    do_HEAD = _handle
    do_POST = _handle
    do_PUT = _handle
    do_DELETE = _handle
    do_PATCH = _handle
    do_OPTIONS = _handle

    def log_message(self, format, *args):
        """Override to use our logger."""
        logger.info(f"{self.address_string()} - {format % args}")


def make_handler(proxy: CachingProxy) -> Type[ProxyRequestHandler]:
    """
    Build a request handler class bound to a proxy.

    Args:
        proxy: The proxy that serves the requests

    Returns:
        A ProxyRequestHandler subclass for use with an http.server server
    """
    return type("BoundProxyRequestHandler", (ProxyRequestHandler,), {"proxy": proxy})
