import io
import logging
from typing import Optional, Union

from .cache_key import DEFAULT_CACHE_PATH, CacheNameStyle, uri_cache_name
from .config import ProxyConfig
from .fetch import DEFAULT_MAX_REDIRECTS
from .models import HTTPRequest, HTTPResponse, ResponseWriter
from .request import ProxyRequest
from .response import ProxyResponse
from .store import FileCacheStore
from .transport import RequestsTransport, SocketTransport, Transport


class CachingProxy:
    """
    A gateway to HTTP with a caching layer.

    Serves requests for a host HTTP server (serve_http) or acts as the
    transport of an HTTP client (round_trip).
    """

    def __init__(self, transport: Optional[Transport] = None,
                 cache_path: str = DEFAULT_CACHE_PATH,
                 cache_name_style: Union[str, CacheNameStyle] = CacheNameStyle.SHA1,
                 max_redirects: int = DEFAULT_MAX_REDIRECTS,
                 store: Optional[FileCacheStore] = None,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize the proxy.

        Args:
            transport: Transport for round trips; a shared default if None
            cache_path: Directory cached responses are stored in
            cache_name_style: How cache file names are derived
            max_redirects: Redirects followed per request before giving up
            store: Cache store; a shared default if None
            logger: Logger to use
        """
        self._transport = transport
        self._cache_path = cache_path
        self._cache_name_style = CacheNameStyle.parse(cache_name_style)
        self._max_redirects = max_redirects
        self._store = store
        self._logger = logger or logging.getLogger(__name__)

        if transport is not None:
            self._logger.info("Created Proxy with Transport")
        else:
            self._logger.info("Created Proxy")

    @classmethod
    def from_config(cls, config: ProxyConfig,
                    logger: Optional[logging.Logger] = None) -> "CachingProxy":
        """Create a proxy from configuration settings."""
        if config.get("transport") == "socket":
            transport = SocketTransport(timeout=config.get("timeout"), logger=logger)
        else:
            transport = RequestsTransport(timeout=config.get("timeout"), logger=logger)

        return cls(
            transport=transport,
            cache_path=config.get("cache_path"),
            cache_name_style=config.get("cache_name_style"),
            max_redirects=config.get("max_redirects"),
            logger=logger,
        )

    @property
    def cache_path(self) -> str:
        return self._cache_path

    @property
    def cache_name_style(self) -> CacheNameStyle:
        return self._cache_name_style

    @property
    def transport(self) -> Optional[Transport]:
        return self._transport

    def use_cache_path(self, path: str) -> "CachingProxy":
        """Set the directory cached responses are saved to and looked up in."""
        self._cache_path = path
        return self

    def use_cache_name_style(self, style: Union[str, CacheNameStyle]) -> "CachingProxy":
        """
        Set how cache file names are derived.

        CacheNameStyle.SHA1 names entries after the SHA-1 of the whole
        request; CacheNameStyle.URI after its host and path.
        """
        self._cache_name_style = CacheNameStyle.parse(style)
        return self

    def serve_http(self, writer: ResponseWriter, request: HTTPRequest) -> None:
        """
        Answer an inbound request on a server connection.

        Args:
            writer: The connection's response writer
            request: The inbound request
        """
        self.fetch(request).write_to(writer)

    def round_trip(self, request: HTTPRequest) -> HTTPResponse:
        """
        Perform a request on behalf of an HTTP client.

        Returns:
            A standalone response parsed from the written response

        Raises:
            TransportError: If the origin could not be reached
            TooManyRedirects: If the redirect chain did not end
        """
        response = self.fetch(request)

        buffer = io.BytesIO()
        response.write_to(buffer)
        if response.error is not None:
            raise response.error

        http_response = HTTPResponse.from_raw_response(buffer.getvalue())
        if http_response is None:
            self._logger.error("Could not read back the written response")
            raise ValueError("Malformed response")
        return http_response

    def fetch(self, request: HTTPRequest) -> ProxyResponse:
        """Fetch the response for an inbound request without writing it."""
        return self.prepare_request(request).http().fetch()

    def prepare_request(self, request: HTTPRequest) -> ProxyRequest:
        self._logger.debug("Received Request")
        proxy_request = (ProxyRequest.load(request, logger=self._logger)
                         .set_transport(self._transport)
                         .set_cache_path(self._cache_path)
                         .set_cache_name_style(self._cache_name_style)
                         .set_cache_store(self._store)
                         .set_max_redirects(self._max_redirects))

        if self._cache_name_style is CacheNameStyle.URI:
            proxy_request.set_cache_name(uri_cache_name(request.host, request.path))

        return proxy_request
