"""
Error kinds raised by the caching proxy.

Only failures of the mandatory round trip reach the caller; everything that
touches the cache alone is recovered from locally and logged.
"""


class ProxyError(Exception):
    """Base class for caching proxy errors."""


class TransportError(ProxyError):
    """The round trip to the origin could not be completed."""

    def __init__(self, message: str, url: str = None):
        super().__init__(message)
        self.url = url


class TooManyRedirects(ProxyError):
    """The redirect chain exceeded the configured number of hops."""

    def __init__(self, url: str, hops: int):
        super().__init__(f"Stopped following redirects at {url} after {hops} hops")
        self.url = url
        self.hops = hops
