import gzip
import io
import logging
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import BinaryIO, Callable, List, Optional, Tuple

from .exceptions import ProxyError
from .headers import copy_headers, parse_directives, strip_hop_by_hop
from .models import Headers, HTTPResponse, ResponseWriter
from .store import FileCacheStore, default_store

CHUNK_SIZE = 64 * 1024

# Validators compared between the cached response and the latest HEAD
VALIDATOR_HEADERS = ("ETag", "Content-MD5", "Content-SHA1")


class ProxyResponse:
    """
    Wraps a fetched response with freshness checks and cache writing.

    The body of the underlying response can only be read from the wire once,
    so the first consumer buffers it and every later consumer reads the
    buffered copy.
    """

    def __init__(self, response: HTTPResponse, error: Optional[Exception] = None,
                 logger: Optional[logging.Logger] = None):
        """
        Wrap a response.

        Args:
            response: Response received from the origin or read from cache
            error: Error of a failed round trip, if any
            logger: Logger to use
        """
        self._logger = logger or logging.getLogger(__name__)
        self._proxied = response
        self._error = error
        self._cached = False
        self._cache_name: Optional[str] = None
        self._store: Optional[FileCacheStore] = None
        self._request_method = "GET"
        self._body: Optional[bytes] = None

        self._logger.debug("Loading Response")
        self._logger.info(f"{response.protocol} {response.status_code} "
                          f"{response.status_message}\n{_format_headers(response.headers)}")
        strip_hop_by_hop(self._proxied.headers)

    @classmethod
    def from_error(cls, error: Exception, status_code: int = 502,
                   message: str = "Bad Gateway",
                   logger: Optional[logging.Logger] = None) -> "ProxyResponse":
        """Create the response delivered when a fetch failed."""
        return cls(HTTPResponse.create_error(status_code, message),
                   error=error, logger=logger)

    @property
    def status_code(self) -> int:
        return self._proxied.status_code

    @property
    def status_message(self) -> str:
        return self._proxied.status_message

    @property
    def headers(self) -> Headers:
        return self._proxied.headers

    @property
    def cached(self) -> bool:
        """True when the response was loaded from the cache store."""
        return self._cached

    @property
    def error(self) -> Optional[Exception]:
        return self._error

    @property
    def cache_name(self) -> Optional[str]:
        return self._cache_name

    def remove_headers(self, *headers: str) -> "ProxyResponse":
        for header in headers:
            self._proxied.headers.remove(header)
        return self

    def set_cache_name(self, name: str) -> "ProxyResponse":
        """Set the cache file path used to save this response."""
        self._cache_name = name
        return self

    def set_cache_store(self, store: FileCacheStore) -> "ProxyResponse":
        self._store = store
        return self

    def set_request_method(self, method: str) -> "ProxyResponse":
        """Record the method of the request this response answers."""
        self._request_method = method.upper()
        return self

    def mark_as_cached(self) -> "ProxyResponse":
        """Flag a response that was loaded from a cached file."""
        self._cached = True
        return self

    def get_header_values(self, header: str) -> List[str]:
        return self._proxied.headers.get_all(header)

    def get_header(self, header: str) -> str:
        return self._proxied.headers.get(header, "")

    def has_header_value(self, header: str, has: str) -> Tuple[str, bool]:
        """
        Look for a directive in a comma separated, multi-valued header.

        Args:
            header: Header name, e.g. Cache-Control
            has: Directive name, e.g. max-age

        Returns:
            The directive's assigned value ("" if none) and whether it was found
        """
        has = has.lower()
        for name, value in parse_directives(self.get_header_values(header)):
            if name == has:
                return value or "", True
        return "", False

    def cache_expired(self, latest_head: Callable[[], "ProxyResponse"],
                      now: Optional[datetime] = None) -> bool:
        """
        Check whether a cached response must be fetched again.

        A response that did not come from the cache is never expired. The
        rules are evaluated in order and the first one that fires wins:
        Cache-Control s-maxage / max-age against Date, Expires, then a
        comparison with the latest headers of the resource. Signals that
        cannot be parsed are skipped.

        Args:
            latest_head: Returns a HEAD only response for the resource; only
                called once the cheaper checks have passed
            now: Current time, timezone aware; defaults to the clock

        Returns:
            True if the cached response is stale
        """
        self._logger.debug(f"Response cached? (should be true): {self._cached}")

        # A response that was just fetched is fresh
        if not self._cached:
            return False

        if now is None:
            now = datetime.now(timezone.utc)

        # Cache-Control: s-maxage and max-age
        date = self._parse_date("Date")
        if date is not None:
            for directive in ("s-maxage", "max-age"):
                value, found = self.has_header_value("Cache-Control", directive)
                if not found:
                    continue
                max_age = self._parse_seconds(directive, value)
                self._logger.debug(f"Cache-Control: has {directive} of {max_age}")
                if max_age is not None and date + timedelta(seconds=max_age) <= now:
                    return True

        # Expires
        expires = self._parse_date("Expires")
        if expires is not None:
            self._logger.debug(f"Expires: on {expires}")
            if expires <= now:
                return True

        # The latest HEAD must come from the origin; anything else can't be trusted
        latest = latest_head()
        if latest.cached or latest.error is not None:
            self._logger.debug("Could not revalidate against the origin")
            return True

        for header in VALIDATOR_HEADERS:
            latest_value = latest.get_header(header)
            cached_value = self.get_header(header)
            if latest_value and cached_value:
                self._logger.debug(f"{header}: latest {latest_value} cached {cached_value}")
                if latest_value != cached_value:
                    return True

        latest_modified = latest._parse_date("Last-Modified")
        cached_modified = self._parse_date("Last-Modified")
        if latest_modified is not None and cached_modified is not None:
            self._logger.debug(f"Last-Modified: latest {latest_modified} cached {cached_modified}")
            if latest_modified > cached_modified:
                return True

        return False

    def _parse_date(self, header: str) -> Optional[datetime]:
        value = self.get_header(header)
        if not value:
            return None
        try:
            parsed = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError) as e:
            self._logger.warning(f"Ignoring {header}: {value!r} ({e})")
            return None
        if parsed is None:
            self._logger.warning(f"Ignoring {header}: {value!r}")
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    def _parse_seconds(self, directive: str, value: str) -> Optional[int]:
        try:
            return int(value)
        except ValueError:
            self._logger.warning(f"Ignoring Cache-Control: {directive}={value!r}")
            return None

    def is_cacheable(self) -> bool:
        """
        Check whether this response may be written to the cache store.

        Responses loaded from the cache, failed fetches and answers to
        anything but GET are never stored, nor is anything marked private,
        no-cache or no-store.
        """
        if self._cached or self._error is not None or not self._cache_name:
            return False

        if self._request_method != "GET":
            return False

        for directive in ("private", "no-cache", "no-store"):
            if self.has_header_value("Cache-Control", directive)[1]:
                self._logger.debug(f"Cache-Control: has {directive}")
                return False

        # TODO: store one entry per Vary variant instead of ignoring Vary

        # Pragma, do not cache if present (backwards compatibility)
        if self.has_header_value("Pragma", "no-cache")[1]:
            self._logger.debug("Pragma: has no-cache")
            return False

        return True

    def read_body(self) -> bytes:
        """
        Get the full body, buffering it on first use.

        A body that fails or ends before its Content-Length sets the error
        slot, which keeps it out of the cache. Content-Length is then set to
        the bytes actually received so that clients are not left waiting.
        """
        if self._body is None:
            buffer = bytearray()
            try:
                while True:
                    chunk = self._proxied.body.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    buffer.extend(chunk)
            except (OSError, ProxyError) as e:
                self._logger.error(f"Error reading response body: {e}")
                self._error = e
            finally:
                self._proxied.close()

            if self._error is None:
                self._check_length(len(buffer))
            if self._error is not None and "Content-Length" in self._proxied.headers:
                self._proxied.headers.set("Content-Length", str(len(buffer)))

            self._body = bytes(buffer)
            self._proxied.body = io.BytesIO(self._body)
        return self._body

    def _check_length(self, received: int) -> None:
        # HEAD answers and bodiless statuses announce a length they never send
        if (self._request_method == "HEAD" or self.status_code < 200
                or self.status_code in (204, 304)):
            return
        try:
            expected = int(self.get_header("Content-Length"))
        except ValueError:
            return
        if received < expected:
            self._error = ProxyError(
                f"Response body cut short: {received} of {expected} bytes")
            self._logger.error(str(self._error))

    def body_stream(self) -> BinaryIO:
        """A fresh stream over the buffered body."""
        return io.BytesIO(self.read_body())

    def write_header_to(self, *writers) -> None:
        """Write the header lines to the writers."""
        data = _format_headers(self._proxied.headers).encode("latin-1")
        for writer in writers:
            writer.write(data)

    def write_body_to(self, *writers) -> None:
        body = self.read_body()
        for writer in writers:
            writer.write(body)

    def gunzip_body_to(self, *writers) -> None:
        """Decompress a gzip encoded body and write it to the writers."""
        try:
            body = gzip.decompress(self.read_body())
        except (OSError, EOFError) as e:
            self._logger.error(f"Error decompressing response body: {e}")
            return
        for writer in writers:
            writer.write(body)

    def write_to(self, *writers) -> None:
        """
        Write the full response to the writers, caching it on the way.

        ResponseWriter instances get the headers, the status and the body;
        any other writer gets the raw serialized response. When the response
        may be cached, the cache entry is one more raw writer, opened only
        after the writers are done so a slow client never holds the entry's
        lock. A cache failure never keeps the response from the writers.
        """
        # A body cut short by the origin must not be cached
        self.read_body()
        self._write_to(*writers)

        if not self.is_cacheable():
            return

        store = self._store or default_store
        try:
            self._logger.debug("Preparing Cache Writer")
            entry = store.open_entry(self._cache_name)
        except OSError as e:
            self._logger.error(f"Cache directory is not writeable: {e}")
            return

        try:
            self._write_to(entry)
        except BaseException:
            entry.abort()
            raise
        entry.commit()

    def _write_to(self, *writers) -> None:
        raw_writers = []
        for writer in writers:
            if isinstance(writer, ResponseWriter):
                copy_headers(self._proxied.headers, writer.headers)
                writer.write_header(self.status_code, self.status_message)
                self.write_body_to(writer)
            else:
                raw_writers.append(writer)

        if not raw_writers:
            return

        # Everything at once; the body is only buffered once
        head = self._proxied.head_bytes()
        body = self.read_body()
        for writer in raw_writers:
            writer.write(head)
            writer.write(body)


def _format_headers(headers: Headers) -> str:
    return "".join(f"{name}: {value}\r\n" for name, value in headers.items())
