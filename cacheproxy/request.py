import logging
from typing import Any, Dict, Optional, Tuple, Union
from urllib.parse import urlsplit, urlunsplit

from .cache_key import (DEFAULT_CACHE_PATH, CacheNameStyle, cache_file_path,
                        sha1_cache_name, uri_cache_name)
from .fetch import DEFAULT_MAX_REDIRECTS, Fetcher
from .headers import HOP_BY_HOP_HEADERS, copy_headers
from .models import DEFAULT_PROTOCOL, Headers, HTTPRequest
from .response import ProxyResponse
from .store import FileCacheStore
from .transport import Transport


class ProxyRequest:
    """
    The outbound request built from an inbound one.

    The inbound request is never modified. Its headers are shared until the
    first change, at which point the proxy request takes a private copy.
    Every configuration method returns the request so calls can be chained.
    """

    def __init__(self, original: HTTPRequest, *hop_by_hop_headers: str,
                 logger: Optional[logging.Logger] = None):
        """
        Load an inbound request.

        Hop-by-hop headers (the standard ones plus hop_by_hop_headers) are
        removed, the caller's address is appended to X-Forwarded-For and the
        path is made absolute.

        Args:
            original: The inbound request
            *hop_by_hop_headers: Extra headers to drop
            logger: Logger to use
        """
        self._logger = logger or logging.getLogger(__name__)
        self._original = original

        self._logger.debug("Cloning Request")
        self._method = original.method
        self._url = original.url
        self._host = original.host
        self._protocol = original.protocol
        self._body = original.body
        # Keep the connection open for reuse
        self._close = False

        self._headers: Optional[Headers] = None
        self._transport: Optional[Transport] = None
        self._store: Optional[FileCacheStore] = None
        self._max_redirects = DEFAULT_MAX_REDIRECTS
        self._cache_path = ""
        self._cache_name = ""
        self._cache_name_style = CacheNameStyle.SHA1
        self._derived_cache_name: Optional[str] = None

        self._logger.debug("Removing HopByHop Headers")
        self.remove_headers(*hop_by_hop_headers, *HOP_BY_HOP_HEADERS)

        self._x_forwarded_for()
        self._normalize_path()

    @classmethod
    def load(cls, original: HTTPRequest, *hop_by_hop_headers: str,
             logger: Optional[logging.Logger] = None) -> "ProxyRequest":
        return cls(original, *hop_by_hop_headers, logger=logger)

    @property
    def original(self) -> HTTPRequest:
        return self._original

    @property
    def method(self) -> str:
        return self._method

    @property
    def url(self) -> str:
        return self._url

    @property
    def host(self) -> str:
        return self._host

    @property
    def protocol(self) -> str:
        return self._protocol

    @property
    def close(self) -> bool:
        return self._close

    @property
    def headers(self) -> Headers:
        """The outbound headers. Read only; use the header methods to change them."""
        if self._headers is None:
            return self._original.headers
        return self._headers

    @property
    def transport(self) -> Optional[Transport]:
        return self._transport

    @property
    def store(self) -> Optional[FileCacheStore]:
        return self._store

    @property
    def max_redirects(self) -> int:
        return self._max_redirects

    @property
    def cache_name_style(self) -> CacheNameStyle:
        return self._cache_name_style

    def remove_headers(self, *headers: str) -> "ProxyRequest":
        for header in headers:
            if header in self.headers:
                self._copy_headers()
                self._logger.debug(f"Removing Header: {header}")
                self._headers.remove(header)
        return self

    def add_header(self, name: str, value: str) -> "ProxyRequest":
        self._copy_headers()
        self._headers.add(name, value)
        return self

    def set_transport(self, transport: Optional[Transport]) -> "ProxyRequest":
        self._logger.debug("Setting Transport For Request")
        self._transport = transport
        return self

    def set_cache_store(self, store: Optional[FileCacheStore]) -> "ProxyRequest":
        self._store = store
        return self

    def set_max_redirects(self, max_redirects: int) -> "ProxyRequest":
        self._max_redirects = max_redirects
        return self

    def head(self) -> "ProxyRequest":
        self._logger.debug("Preparing To Request Only Headers")
        return self._set_method("HEAD")

    def get(self, *forms: Dict[str, Any]) -> "ProxyRequest":
        self._logger.debug("Preparing GET Request")
        return self._set_method("GET").add_form_data(*forms)

    def put(self, *forms: Dict[str, Any]) -> "ProxyRequest":
        self._logger.debug("Preparing PUT Request")
        return self._set_method("PUT").add_form_data(*forms)

    def post(self, *forms: Dict[str, Any]) -> "ProxyRequest":
        self._logger.debug("Preparing POST Request")
        return self._set_method("POST").add_form_data(*forms)

    def delete(self, *forms: Dict[str, Any]) -> "ProxyRequest":
        self._logger.debug("Preparing DELETE Request")
        return self._set_method("DELETE").add_form_data(*forms)

    def set_method(self, method: str) -> "ProxyRequest":
        return self._set_method(method.upper())

    def restore_original_method(self) -> "ProxyRequest":
        self._logger.debug(f"Restoring To {self._original.method} Request")
        return self._set_method(self._original.method)

    def add_form_data(self, *forms: Dict[str, Any]) -> "ProxyRequest":
        """Form data injection is not supported; the request is left as is."""
        if any(forms):
            self._logger.warning("No Handler for FormData Injection Yet")
        return self

    def add_form_field(self, key: str, value: str) -> "ProxyRequest":
        self._logger.warning("No Handler for FormData Injection Yet")
        return self

    def add_form_file(self, key: str, value) -> "ProxyRequest":
        self._logger.warning("No Handler for FormData Injection Yet")
        return self

    def http(self) -> "ProxyRequest":
        """Send the request as HTTP/1.1 whatever the inbound version was."""
        self._logger.debug("Preparing HTTP Request")
        self._protocol = DEFAULT_PROTOCOL
        self._derived_cache_name = None
        return self

    def set_url(self, url: str, host: Optional[str] = None) -> "ProxyRequest":
        """
        Point the request at another URL, as when following a redirect.

        Args:
            url: The new request URL
            host: The new Host, if the URL names one
        """
        self._url = url
        if host:
            self._host = host
        self._derived_cache_name = None
        return self

    def set_cache_path(self, path: str) -> "ProxyRequest":
        self._cache_path = path
        self._derived_cache_name = None
        return self

    def cache_path(self) -> str:
        return self._cache_path or DEFAULT_CACHE_PATH

    def set_cache_name_style(self, style: Union[str, CacheNameStyle]) -> "ProxyRequest":
        self._cache_name_style = CacheNameStyle.parse(style)
        self._derived_cache_name = None
        return self

    def set_cache_name(self, name: str) -> "ProxyRequest":
        """Use a fixed cache name, relative to the cache path, from now on."""
        self._cache_name = cache_file_path(self.cache_path(), name)
        return self

    def cache_name(self) -> str:
        """
        Get the cache file path of this request.

        An explicit name always wins. Otherwise the name is derived from the
        request in the configured style and kept until the request changes.
        """
        if self._cache_name:
            return self._cache_name

        if self._derived_cache_name is None:
            if self._cache_name_style is CacheNameStyle.URI:
                parts = urlsplit(self._url)
                name = uri_cache_name(parts.netloc or self._host, parts.path)
            else:
                self._logger.debug("Generating SHA1 Hash Of Request")
                name = sha1_cache_name(self.build())
            self._derived_cache_name = cache_file_path(self.cache_path(), name)

        return self._derived_cache_name

    def build(self) -> HTTPRequest:
        """Snapshot the request as it would be sent right now."""
        return HTTPRequest(
            method=self._method,
            url=self._url,
            headers=self.headers.copy(),
            protocol=self._protocol,
            body=self._body,
            host=self._host,
            remote_addr=self._original.remote_addr,
            close=self._close,
        )

    def fetch(self, transport: Optional[Transport] = None) -> ProxyResponse:
        """
        Fetch the response, from the cache when possible.

        Args:
            transport: Transport to use for this call only
        """
        return Fetcher(self, logger=self._logger).fetch(transport)

    def _set_method(self, method: str) -> "ProxyRequest":
        self._method = method
        self._derived_cache_name = None
        return self

    def _copy_headers(self) -> None:
        if self._headers is None:
            self._logger.debug("Copying Request Headers")
            self._headers = Headers()
            copy_headers(self._original.headers, self._headers)
        self._derived_cache_name = None

    def _x_forwarded_for(self) -> None:
        addr = _remote_host(self._original.remote_addr)
        if addr:
            self._logger.debug("Adding/Appending X-Forwarded-For Header")
            self.add_header("X-Forwarded-For", addr)

    def _normalize_path(self) -> None:
        parts = urlsplit(self._url)
        if not parts.path.startswith("/"):
            self._url = urlunsplit(parts._replace(path="/" + parts.path))


def _remote_host(remote_addr: Union[str, Tuple[str, int], None]) -> Optional[str]:
    """The host part of a host:port address; None unless both are present."""
    if isinstance(remote_addr, tuple):
        return str(remote_addr[0]) if len(remote_addr) >= 2 else None
    if not remote_addr:
        return None
    try:
        parts = urlsplit("//" + remote_addr)
        if parts.hostname and parts.port is not None:
            return parts.hostname
    except ValueError:
        return None
    return None
