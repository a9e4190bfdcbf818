import logging
from typing import TYPE_CHECKING, Optional
from urllib.parse import urljoin, urlsplit, urlunsplit

from .exceptions import TooManyRedirects, TransportError
from .models import HTTPResponse
from .response import ProxyResponse
from .store import default_store
from .transport import Transport, default_transport

if TYPE_CHECKING:
    from .request import ProxyRequest

DEFAULT_MAX_REDIRECTS = 10


class Fetcher:
    """
    Runs the fetch pipeline for one outbound request.

    CheckCache -> Validate -> RoundTrip -> HandleRedirect -> Done. A redirect
    rewrites the request in place and goes back to CheckCache, for at most
    the request's max_redirects hops.
    """

    def __init__(self, request: "ProxyRequest",
                 logger: Optional[logging.Logger] = None):
        self._request = request
        self._logger = logger or logging.getLogger(__name__)
        self._store = request.store or default_store
        self._transport: Optional[Transport] = None

    def fetch(self, transport: Optional[Transport] = None) -> ProxyResponse:
        """
        Fetch the response of the request.

        Args:
            transport: Transport overriding the request's for this fetch

        Returns:
            The cached or fetched response; failures come back as an error
            response with the error attached
        """
        self._transport = transport
        return self._run(revalidating=False)

    def revalidate(self) -> ProxyResponse:
        """
        Fetch the latest headers of the resource with a HEAD request.

        Never reads from or writes to the cache. The request's method, URL
        and host are restored afterwards whatever the outcome.
        """
        url, host, method = self._request.url, self._request.host, self._request.method
        self._request.head()
        try:
            response = self._run(revalidating=True)
            # Headers only; drain the empty body and keep it out of the cache
            response.read_body()
            response.set_cache_name(None)
            return response
        finally:
            self._request.set_url(url, host)
            self._request.set_method(method)

    def fetch_cache(self) -> Optional[ProxyResponse]:
        """
        Serve the request from the cache if a fresh entry exists.

        Returns:
            The cached response, or None on a miss or a stale entry
        """
        cache_name = self._request.cache_name()

        self._logger.debug("Checking If Cached Response Exists")
        raw_response = self._store.read(cache_name)
        if raw_response is not None:
            http_response = HTTPResponse.from_raw_response(raw_response)
            if http_response is None:
                self._logger.error(f"Ignoring unreadable cache entry {cache_name}")
            else:
                self._logger.debug("Loading Cached Response")
                response = self._wrap(http_response).mark_as_cached()

                self._logger.debug("Checking For Cached Response Expiration")
                if not response.cache_expired(self.revalidate):
                    self._logger.debug("Serving Cached Response")
                    return response

        self._logger.debug("No Valid Cached Response")
        return None

    def _run(self, revalidating: bool) -> ProxyResponse:
        hops = 0
        while True:
            if self._request.method == "GET" and not revalidating:
                response = self.fetch_cache()
                if response is not None:
                    return response

            try:
                http_response = self._round_trip()
            except TransportError as e:
                self._logger.error(f"Round trip failed: {e}")
                return self._error_response(e)

            # Handle Location HTTP Header redirects
            self._logger.debug("Checking If Location Response Header Was Received")
            location = http_response.headers.get("Location")
            if location:
                target = self._resolve_location(location)
                if target is not None:
                    if hops >= self._request.max_redirects:
                        http_response.close()
                        error = TooManyRedirects(target, hops)
                        self._logger.error(str(error))
                        return self._error_response(error, message="Too Many Redirects")

                    hops += 1
                    http_response.close()
                    self._logger.debug(f"Fetch The Redirected Request: {target}")
                    self._request.set_url(target, urlsplit(target).netloc)
                    continue

            return self._wrap(http_response)

    def _round_trip(self) -> HTTPResponse:
        self._logger.debug("Fetching Response From Request")
        outbound = self._request.build()
        head = outbound.to_bytes().split(b"\r\n\r\n", 1)[0]
        self._logger.info("\n" + head.decode("latin-1"))

        transport = self._transport or self._request.transport or default_transport()
        return transport.round_trip(outbound)

    def _resolve_location(self, location: str) -> Optional[str]:
        """
        Resolve a Location header against the current URL.

        Returns:
            The absolute target URL, or None if the location is unusable
        """
        self._logger.debug("Handling Location Response Header Redirect")
        try:
            base = urlsplit(self._request.url)
            # The URL of a forwarded request may lack a host
            if not base.netloc:
                base = base._replace(scheme=base.scheme or "http",
                                     netloc=self._request.host)
            target = urljoin(urlunsplit(base), location.strip())
            # Malformed hosts and ports raise here rather than in the transport
            parts = urlsplit(target)
            valid = bool(parts.hostname) and parts.port != 0
        except ValueError as e:
            self._logger.error(f"Could Not Handle Location Redirect: {e}")
            return None

        if not valid:
            self._logger.error(f"Could Not Handle Location Redirect: {location!r}")
            return None
        return target

    def _wrap(self, http_response: HTTPResponse) -> ProxyResponse:
        return (ProxyResponse(http_response, logger=self._logger)
                .set_cache_name(self._request.cache_name())
                .set_cache_store(self._store)
                .set_request_method(self._request.method))

    def _error_response(self, error: Exception,
                        message: str = "Bad Gateway") -> ProxyResponse:
        return (ProxyResponse.from_error(error, message=message, logger=self._logger)
                .set_cache_name(self._request.cache_name())
                .set_request_method(self._request.method))
