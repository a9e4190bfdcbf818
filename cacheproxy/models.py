import io
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import BinaryIO, Dict, Iterator, List, Optional, Tuple, Union
from urllib.parse import urlsplit, urlunsplit

DEFAULT_PROTOCOL = "HTTP/1.1"


class Headers:
    """Case-insensitive, ordered, multi-valued HTTP header container."""

    def __init__(self, items=None):
        """
        Initialize the headers.

        Args:
            items: Optional mapping, Headers or iterable of (name, value) pairs
        """
        # lower-cased name -> (name as first inserted, values)
        self._store: Dict[str, Tuple[str, List[str]]] = {}
        if items is not None:
            pairs = items.items() if hasattr(items, "items") else items
            for name, value in pairs:
                self.add(name, value)

    def add(self, name: str, value: str) -> None:
        """Append a value, keeping any existing values of the header."""
        key = name.lower()
        if key in self._store:
            self._store[key][1].append(value)
        else:
            self._store[key] = (name, [value])

    def set(self, name: str, value: str) -> None:
        """Replace all values of a header with a single value."""
        key = name.lower()
        original = self._store[key][0] if key in self._store else name
        self._store[key] = (original, [value])

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get the first value of a header."""
        entry = self._store.get(name.lower())
        return entry[1][0] if entry else default

    def get_all(self, name: str) -> List[str]:
        """Get every value of a header, in insertion order."""
        entry = self._store.get(name.lower())
        return list(entry[1]) if entry else []

    def remove(self, name: str) -> None:
        self._store.pop(name.lower(), None)

    def names(self) -> List[str]:
        return [name for name, _ in self._store.values()]

    def items(self) -> List[Tuple[str, str]]:
        """One (name, value) pair per value, in insertion order."""
        return [(name, value)
                for name, values in self._store.values()
                for value in values]

    def copy(self) -> "Headers":
        return Headers(self.items())

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._store

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def __len__(self) -> int:
        return len(self._store)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Headers):
            return NotImplemented
        return ({k: v for k, (_, v) in self._store.items()} ==
                {k: v for k, (_, v) in other._store.items()})

    def __repr__(self) -> str:
        return f"Headers({self.items()!r})"


@dataclass
class HTTPRequest:
    """Model representing an HTTP request."""
    method: str
    url: str
    headers: Headers = field(default_factory=Headers)
    protocol: str = DEFAULT_PROTOCOL
    body: bytes = b""
    host: str = ""
    remote_addr: Optional[Union[str, Tuple[str, int]]] = None
    close: bool = False

    def __post_init__(self):
        if not isinstance(self.headers, Headers):
            self.headers = Headers(self.headers)
        if not self.host:
            self.host = self.headers.get("Host") or urlsplit(self.url).netloc

    @property
    def path(self) -> str:
        return urlsplit(self.url).path

    def absolute_url(self) -> str:
        """The request URL in absolute-URI form, borrowing the host if needed."""
        parts = urlsplit(self.url)
        if parts.netloc:
            return self.url
        return urlunsplit(("http", self.host, parts.path or "/", parts.query, ""))

    @classmethod
    def from_raw_data(cls, request_data: Union[str, bytes]) -> Optional["HTTPRequest"]:
        """Create HTTPRequest instance from raw request data."""
        if isinstance(request_data, str):
            request_data = request_data.encode("latin-1")

        try:
            head, _, body = request_data.partition(b"\r\n\r\n")
            lines = head.decode("latin-1").split("\n")

            # Parse request line
            method, target, protocol = lines[0].strip().split()
            if not protocol.startswith("HTTP/"):
                return None

            # Parse headers
            headers = Headers()
            for line in lines[1:]:
                line = line.strip()
                if not line:
                    break
                key, value = line.split(":", 1)
                headers.add(key.strip(), value.strip())

            content_length = headers.get("Content-Length")
            if content_length is not None:
                body = body[:int(content_length)]

            return cls(
                method=method,
                url=target,
                protocol=protocol,
                headers=headers,
                body=body,
            )
        except (ValueError, UnicodeError):
            return None

    def to_bytes(self, proxy: bool = False) -> bytes:
        """
        Serialize the request.

        Headers are written in sorted order so that equal requests always
        produce equal bytes.

        Args:
            proxy: Use the absolute-URI request target of a proxied request

        Returns:
            Raw request bytes
        """
        if proxy:
            target = self.absolute_url()
        else:
            parts = urlsplit(self.url)
            target = urlunsplit(("", "", parts.path or "/", parts.query, ""))

        lines = [f"{self.method} {target} {self.protocol}"]
        if self.host:
            lines.append(f"Host: {self.host}")
        for name in sorted(self.headers.names(), key=str.lower):
            if name.lower() == "host":
                continue
            for value in self.headers.get_all(name):
                lines.append(f"{name}: {value}")
        if self.body and "Content-Length" not in self.headers:
            lines.append(f"Content-Length: {len(self.body)}")

        head = "\r\n".join(lines) + "\r\n\r\n"
        return head.encode("latin-1") + self.body


@dataclass
class HTTPResponse:
    """
    Model representing an HTTP response.

    The body is a readable binary stream and can only be read once; bytes or
    str passed in are wrapped in a stream.
    """
    status_code: int
    status_message: str
    headers: Headers = field(default_factory=Headers)
    body: BinaryIO = field(default_factory=io.BytesIO)
    protocol: str = DEFAULT_PROTOCOL

    def __post_init__(self):
        if not isinstance(self.headers, Headers):
            self.headers = Headers(self.headers)
        if isinstance(self.body, str):
            self.body = self.body.encode("utf-8")
        if isinstance(self.body, (bytes, bytearray)):
            self.body = io.BytesIO(bytes(self.body))

    @classmethod
    def from_raw_response(cls, raw_response: bytes) -> Optional["HTTPResponse"]:
        """Create HTTPResponse instance from raw response data."""
        return cls.read_response(io.BytesIO(raw_response))

    @classmethod
    def read_response(cls, stream: BinaryIO) -> Optional["HTTPResponse"]:
        """
        Parse a serialized response from a binary stream.

        The body is Content-Length bytes when the header is present, the
        decoded chunks of a chunked body, or else the rest of the stream.

        Args:
            stream: Stream positioned at the status line

        Returns:
            HTTPResponse, or None if the data is not a valid response
        """
        try:
            # Parse status line
            status_line = stream.readline().decode("latin-1").rstrip("\r\n")
            protocol, status_code, *status_message = status_line.split(" ")
            if not protocol.startswith("HTTP/"):
                return None

            # Parse headers
            headers = Headers()
            while True:
                line = stream.readline()
                if line in (b"\r\n", b"\n", b""):
                    break
                key, value = line.decode("latin-1").split(":", 1)
                headers.add(key.strip(), value.strip())

            if "chunked" in headers.get("Transfer-Encoding", "").lower():
                body = _read_chunked(stream)
            elif "Content-Length" in headers:
                body = stream.read(int(headers.get("Content-Length")))
            else:
                body = stream.read()

            return cls(
                status_code=int(status_code),
                status_message=" ".join(status_message),
                headers=headers,
                body=body,
                protocol=protocol,
            )
        except (ValueError, UnicodeError):
            return None

    def head_bytes(self) -> bytes:
        """The serialized status line and headers, up to the blank line."""
        lines = [f"{self.protocol} {self.status_code} {self.status_message}"]
        lines.extend(f"{name}: {value}" for name, value in self.headers.items())
        return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")

    def to_bytes(self) -> bytes:
        """Serialize the response. Consumes the body."""
        return self.head_bytes() + self.body.read()

    def close(self) -> None:
        close = getattr(self.body, "close", None)
        if close is not None:
            close()

    @classmethod
    def create_error(cls, status_code: int, message: str) -> "HTTPResponse":
        """Create an error response."""
        return cls(
            status_code=status_code,
            status_message=message,
            headers={
                "Content-Type": "text/plain",
                "Content-Length": str(len(message)),
            },
            body=message,
        )


def _read_chunked(stream: BinaryIO) -> bytes:
    body = bytearray()
    while True:
        size_line = stream.readline()
        if not size_line:
            break
        size = int(size_line.split(b";", 1)[0].strip(), 16)
        if size == 0:
            # Skip trailers
            while stream.readline() not in (b"\r\n", b"\n", b""):
                pass
            break
        body.extend(stream.read(size))
        stream.readline()
    return bytes(body)


class ResponseWriter(ABC):
    """
    A sink that carries its own status line and headers, such as a server
    connection. Headers must be filled in before write_header is called.
    """

    @property
    @abstractmethod
    def headers(self) -> Headers:
        pass

    @abstractmethod
    def write_header(self, status_code: int, status_message: str = "") -> None:
        pass

    @abstractmethod
    def write(self, data: bytes) -> int:
        pass


class BufferedResponseWriter(ResponseWriter):
    """ResponseWriter that collects the response in memory."""

    def __init__(self):
        self._headers = Headers()
        self.status_code: Optional[int] = None
        self.status_message = ""
        self.body = bytearray()

    @property
    def headers(self) -> Headers:
        return self._headers

    def write_header(self, status_code: int, status_message: str = "") -> None:
        self.status_code = status_code
        self.status_message = status_message

    def write(self, data: bytes) -> int:
        if self.status_code is None:
            self.write_header(200, "OK")
        self.body.extend(data)
        return len(data)

    def to_response(self) -> HTTPResponse:
        return HTTPResponse(
            status_code=self.status_code or 200,
            status_message=self.status_message,
            headers=self._headers.copy(),
            body=bytes(self.body),
        )
