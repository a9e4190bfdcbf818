import logging
import select
import socket
import ssl
import threading
from abc import ABC, abstractmethod
from typing import Optional
from urllib.parse import urlsplit

import requests
import urllib3

from .exceptions import TransportError
from .models import Headers, HTTPRequest, HTTPResponse

DEFAULT_TIMEOUT = 5  # seconds


class Transport(ABC):
    """Executes a single HTTP round trip. Never follows redirects."""

    @abstractmethod
    def round_trip(self, request: HTTPRequest) -> HTTPResponse:
        """
        Send a request and return the response.

        Args:
            request: Fully prepared outbound request

        Returns:
            The origin's response, with an unread body stream

        Raises:
            TransportError: If the round trip could not be completed
        """


class RequestsTransport(Transport):
    """Round trips over a pooled requests session."""

    def __init__(self, session: Optional[requests.Session] = None,
                 timeout: float = DEFAULT_TIMEOUT,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize the transport.

        Args:
            session: Session to send requests with
            timeout: Connect and read timeout in seconds
            logger: Logger to use
        """
        if session is None:
            session = requests.Session()
            # Forward exactly the headers we were given
            session.headers.clear()
            session.trust_env = False
        self._session = session
        self._timeout = timeout
        self._logger = logger or logging.getLogger(__name__)

    def round_trip(self, request: HTTPRequest) -> HTTPResponse:
        url = request.absolute_url()

        # requests takes a plain mapping; fold repeated headers into one value
        headers = {}
        for name in request.headers.names():
            if name.lower() in ("host", "content-length"):
                continue
            headers[name] = ", ".join(request.headers.get_all(name))
        if request.host and request.host != urlsplit(url).netloc:
            headers["Host"] = request.host

        try:
            response = self._session.request(
                request.method,
                url,
                headers=headers,
                data=request.body or None,
                allow_redirects=False,
                stream=True,
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            self._logger.error(f"Error forwarding request to {url}: {e}")
            raise TransportError(str(e), url=url) from e

        # The raw stream keeps any Content-Encoding intact
        return HTTPResponse(
            status_code=response.status_code,
            status_message=response.reason or "",
            headers=Headers(response.raw.headers.items()),
            body=_RawBody(response),
            protocol=_protocol_name(getattr(response.raw, "version", 11)),
        )


class _RawBody:
    """Undecoded body stream of a requests response."""

    def __init__(self, response: requests.Response):
        self._response = response

    def read(self, size: int = -1) -> bytes:
        amount = None if size is None or size < 0 else size
        try:
            return self._response.raw.read(amount, decode_content=False) or b""
        except (urllib3.exceptions.HTTPError, OSError) as e:
            raise TransportError(str(e), url=self._response.url) from e

    def close(self) -> None:
        self._response.close()


def _protocol_name(version: int) -> str:
    return {10: "HTTP/1.0", 11: "HTTP/1.1", 20: "HTTP/2"}.get(version, "HTTP/1.1")


class SocketTransport(Transport):
    """
    Round trips over a fresh socket per request.

    The request is sent with Connection: close and the response is read
    until the origin closes the connection.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT,
                 ssl_context: Optional[ssl.SSLContext] = None,
                 logger: Optional[logging.Logger] = None):
        self._timeout = timeout
        self._ssl_context = ssl_context
        self._logger = logger or logging.getLogger(__name__)

    def round_trip(self, request: HTTPRequest) -> HTTPResponse:
        parsed_url = urlsplit(request.absolute_url())
        secure = parsed_url.scheme == "https"
        port = parsed_url.port or (443 if secure else 80)

        outbound = HTTPRequest(
            method=request.method,
            url=request.url,
            headers=request.headers.copy(),
            protocol=request.protocol,
            body=request.body,
            host=request.host,
        )
        outbound.headers.set("Connection", "close")

        try:
            backend_socket = socket.create_connection(
                (parsed_url.hostname, port), timeout=self._timeout)
            if secure:
                context = self._ssl_context or ssl.create_default_context()
                backend_socket = context.wrap_socket(
                    backend_socket, server_hostname=parsed_url.hostname)

            try:
                backend_socket.sendall(outbound.to_bytes())
                response_data = self._read_response(backend_socket)
            finally:
                backend_socket.close()
        except OSError as e:
            self._logger.error(f"Error forwarding request to {parsed_url.netloc}: {e}")
            raise TransportError(str(e), url=request.absolute_url()) from e

        response = HTTPResponse.from_raw_response(response_data)
        if response is None:
            raise TransportError(
                "Malformed response from origin", url=request.absolute_url())
        return response

    def _read_response(self, backend_socket: socket.socket) -> bytes:
        """Read the complete response from a socket."""
        response = bytearray()
        while True:
            # TLS sockets may hold decrypted bytes that select cannot see
            pending = isinstance(backend_socket, ssl.SSLSocket) and backend_socket.pending()
            if not pending:
                ready = select.select([backend_socket], [], [], self._timeout)
                if not ready[0]:  # Timeout
                    raise TransportError("Timed out reading response")

            data = backend_socket.recv(4096)
            if not data:
                break
            response.extend(data)

        return bytes(response)


_default_transport: Optional[Transport] = None
_default_transport_lock = threading.Lock()


def default_transport() -> Transport:
    """The shared transport used when none is configured."""
    global _default_transport
    with _default_transport_lock:
        if _default_transport is None:
            _default_transport = RequestsTransport()
        return _default_transport
