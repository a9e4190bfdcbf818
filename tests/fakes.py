"""Test doubles shared by the unit tests."""

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

from cacheproxy.exceptions import TransportError
from cacheproxy.models import Headers, HTTPRequest, HTTPResponse
from cacheproxy.transport import Transport


def http_date(offset_seconds: int = 0) -> str:
    """An RFC 1123 date relative to now."""
    moment = datetime.now(timezone.utc) + timedelta(seconds=offset_seconds)
    return format_datetime(moment, usegmt=True)


class FakeTransport(Transport):
    """Serves canned responses by URL and records every request it gets."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def route(self, url, status_code=200, headers=None, body=b"",
              status_message="OK", method=None):
        """Answer requests for url (and method, if given) with a response."""
        self.routes[(method, url)] = (status_code, status_message,
                                      list((headers or {}).items()), body)
        return self

    def round_trip(self, request: HTTPRequest) -> HTTPResponse:
        self.requests.append(request)
        url = request.absolute_url()
        route = self.routes.get((request.method, url)) or self.routes.get((None, url))
        if route is None:
            raise TransportError(f"No route to {url}", url=url)

        status_code, status_message, headers, body = route
        if request.method == "HEAD":
            body = b""
        return HTTPResponse(status_code, status_message, Headers(headers), body)

    @property
    def calls(self):
        """(method, url) of every request, in order."""
        return [(r.method, r.absolute_url()) for r in self.requests]
