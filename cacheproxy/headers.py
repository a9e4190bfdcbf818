from typing import Iterable, List, Optional, Tuple

# Headers that only apply to a single transport connection and must not be
# forwarded by a proxy.
# http://www.w3.org/Protocols/rfc2616/rfc2616-sec13.html
HOP_BY_HOP_HEADERS = (
    "Connection",
    "Keep-Alive",
    "Proxy-Authenticate",
    "Proxy-Authorization",
    "TE",
    "Trailers",
    "Transfer-Encoding",
    "Upgrade",
)


def copy_headers(src, dst) -> None:
    """
    Append every value of every header in src to dst.

    Multi-valued headers keep all of their values in their original order.
    The copy is only idempotent when dst starts out empty.

    Args:
        src: Headers to read from
        dst: Headers to append to
    """
    for name, value in src.items():
        dst.add(name, value)


def strip_hop_by_hop(headers, *extra: str) -> List[str]:
    """
    Remove the hop-by-hop headers plus any extra names, case-insensitively.

    Args:
        headers: Headers to modify in place
        *extra: Additional header names to remove

    Returns:
        The names that were present and removed
    """
    removed = []
    for name in HOP_BY_HOP_HEADERS + tuple(extra):
        if name in headers:
            headers.remove(name)
            removed.append(name)
    return removed


def parse_directives(values: Iterable[str]) -> List[Tuple[str, Optional[str]]]:
    """
    Split Cache-Control style header values into (name, value) directives.

    Directive names are lower-cased; a directive without '=' has value None.
    """
    directives = []
    for header_value in values:
        for item in header_value.split(","):
            item = item.strip()
            if not item:
                continue
            if "=" in item:
                name, value = item.split("=", 1)
                directives.append((name.strip().lower(), value.strip().strip('"')))
            else:
                directives.append((item.lower(), None))
    return directives
