import hashlib
import os
import posixpath
from enum import Enum
from typing import Union

from .models import HTTPRequest

DEFAULT_CACHE_PATH = "./cache"


class CacheNameStyle(Enum):
    """How cache file names are derived from a request."""

    # Hex SHA-1 of the whole proxied request (request line and headers)
    SHA1 = "sha1"
    # Host and path of the request URL
    URI = "uri"

    @classmethod
    def parse(cls, value: Union[str, "CacheNameStyle"]) -> "CacheNameStyle":
        """
        Resolve a style from its name.

        Args:
            value: A CacheNameStyle, or "sha1" / "uri" in any case

        Returns:
            The matching CacheNameStyle
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown cache name style: {value!r}") from None


def sha1_cache_name(request: HTTPRequest) -> str:
    """
    Name a cache entry after the content of the request.

    Any difference in method, URL or headers (X-Forwarded-For included)
    produces a different name.
    """
    return hashlib.sha1(request.to_bytes(proxy=True)).hexdigest()


def uri_cache_name(host: str, path: str) -> str:
    """
    Name a cache entry after the host and path of the resource.

    Query strings and headers are ignored, so every variant of a resource
    shares one entry. The path is normalized so that it stays below the host.
    """
    path = posixpath.normpath("/" + (path or "")).lstrip("/")
    return posixpath.join(host, path) if path else host


def cache_file_path(cache_path: str, name: str) -> str:
    return os.path.join(cache_path or DEFAULT_CACHE_PATH, name)
