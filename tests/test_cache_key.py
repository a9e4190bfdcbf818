import unittest
import sys
import os

# Add the parent directory to the Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cacheproxy.cache_key import (CacheNameStyle, cache_file_path,
                                  sha1_cache_name, uri_cache_name)
from cacheproxy.models import HTTPRequest
from cacheproxy.request import ProxyRequest


def make_request(url="http://example.com/data?page=1", headers=None):
    return HTTPRequest(
        method="GET",
        url=url,
        headers=headers if headers is not None else {"Accept": "text/html"},
        remote_addr="10.0.0.1:4000",
    )


class TestContentHashNaming(unittest.TestCase):
    """Test cases for SHA-1 cache names."""

    def test_identical_requests_share_a_name(self):
        """Test that equal method, URL and headers give equal names."""
        # Arrange
        first = ProxyRequest.load(make_request())
        second = ProxyRequest.load(make_request())

        # Act and Assert
        self.assertEqual(first.cache_name(), second.cache_name())

    def test_header_value_changes_name(self):
        """Test that changing any header value changes the name."""
        # Arrange
        first = ProxyRequest.load(make_request(headers={"Accept": "text/html"}))
        second = ProxyRequest.load(make_request(headers={"Accept": "text/plain"}))

        # Act and Assert
        self.assertNotEqual(first.cache_name(), second.cache_name())

    def test_forwarded_for_changes_name(self):
        """Test that a different client address changes the name."""
        # Arrange
        other = make_request()
        other.remote_addr = "10.0.0.2:4000"

        # Act and Assert
        self.assertNotEqual(ProxyRequest.load(make_request()).cache_name(),
                            ProxyRequest.load(other).cache_name())

    def test_name_is_hex_digest_under_cache_path(self):
        """Test the shape of a content-hash cache path."""
        # Arrange
        request = ProxyRequest.load(make_request()).set_cache_path("/tmp/cache")

        # Act
        name = request.cache_name()

        # Assert
        self.assertEqual(os.path.dirname(name), "/tmp/cache")
        self.assertEqual(len(os.path.basename(name)), 40)
        self.assertEqual(os.path.basename(name), sha1_cache_name(request.build()))

    def test_default_cache_path(self):
        """Test that names resolve under ./cache by default."""
        request = ProxyRequest.load(make_request())

        self.assertEqual(os.path.dirname(request.cache_name()), "./cache")

    def test_name_is_memoized_until_request_changes(self):
        """Test that the derived name is kept until the URL changes."""
        # Arrange
        request = ProxyRequest.load(make_request())
        first = request.cache_name()

        # Act
        repeated = request.cache_name()
        request.set_url("http://example.com/other", "example.com")
        redirected = request.cache_name()

        # Assert
        self.assertIs(first, repeated)
        self.assertNotEqual(first, redirected)

    def test_explicit_name_always_wins(self):
        """Test that an explicit cache name is never recomputed."""
        # Arrange
        request = ProxyRequest.load(make_request()).set_cache_path("root")

        # Act
        request.set_cache_name("fixed")
        request.add_header("X-Extra", "1")
        request.set_url("http://example.com/elsewhere", "example.com")

        # Assert
        self.assertEqual(request.cache_name(), os.path.join("root", "fixed"))


class TestResourceNaming(unittest.TestCase):
    """Test cases for host/path cache names."""

    def test_headers_and_query_are_ignored(self):
        """Test that variants of one resource share a name."""
        # Arrange
        first = (ProxyRequest.load(make_request("http://example.com/data?page=1"))
                 .set_cache_name_style(CacheNameStyle.URI))
        second = (ProxyRequest.load(make_request("http://example.com/data?page=2",
                                                 headers={"Accept": "application/json"}))
                  .set_cache_name_style("uri"))

        # Act and Assert
        self.assertEqual(first.cache_name(), second.cache_name())
        self.assertEqual(first.cache_name(), os.path.join("./cache", "example.com/data"))

    def test_host_and_path(self):
        """Test the host/path concatenation."""
        self.assertEqual(uri_cache_name("example.com", "/a/b.css"), "example.com/a/b.css")
        self.assertEqual(uri_cache_name("example.com:8080", "/"), "example.com:8080")

    def test_path_cannot_escape_cache_root(self):
        """Test that dot segments stay below the host."""
        self.assertEqual(uri_cache_name("example.com", "/../../etc/passwd"),
                         "example.com/etc/passwd")

    def test_cache_file_path(self):
        """Test joining names to the cache root."""
        self.assertEqual(cache_file_path("/var/cache", "abc"), "/var/cache/abc")
        self.assertEqual(cache_file_path("", "abc"), "./cache/abc")


class TestCacheNameStyle(unittest.TestCase):
    """Test cases for style parsing."""

    def test_parse(self):
        """Test resolving styles from names."""
        self.assertIs(CacheNameStyle.parse("SHA1"), CacheNameStyle.SHA1)
        self.assertIs(CacheNameStyle.parse("uri"), CacheNameStyle.URI)
        self.assertIs(CacheNameStyle.parse(CacheNameStyle.URI), CacheNameStyle.URI)

    def test_parse_unknown(self):
        """Test that unknown styles are rejected."""
        with self.assertRaises(ValueError):
            CacheNameStyle.parse("md5")


if __name__ == '__main__':
    unittest.main()
