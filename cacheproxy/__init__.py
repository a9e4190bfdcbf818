"""
An HTTP caching proxy core.
"""

from .cache_key import CacheNameStyle
from .config import ProxyConfig
from .exceptions import ProxyError, TooManyRedirects, TransportError
from .handler import ProxyRequestHandler, make_handler
from .models import BufferedResponseWriter, Headers, HTTPRequest, HTTPResponse, ResponseWriter
from .proxy import CachingProxy
from .request import ProxyRequest
from .response import ProxyResponse
from .store import FileCacheStore
from .transport import RequestsTransport, SocketTransport, Transport

__all__ = [
    'CachingProxy', 'ProxyRequest', 'ProxyResponse', 'ProxyConfig',
    'CacheNameStyle', 'FileCacheStore',
    'HTTPRequest', 'HTTPResponse', 'Headers', 'ResponseWriter', 'BufferedResponseWriter',
    'Transport', 'RequestsTransport', 'SocketTransport',
    'ProxyRequestHandler', 'make_handler',
    'ProxyError', 'TransportError', 'TooManyRedirects',
]
