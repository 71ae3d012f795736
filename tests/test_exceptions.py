"""Tests for error classification and URL helpers."""

import pytest
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeout

from pixelperfect.exceptions import (
    ComparerError,
    DnsError,
    NavigationError,
    NavigationTimeoutError,
    NetworkError,
    SslError,
    StabilityError,
    ValidationError,
    classify_navigation_error,
    is_crash,
)
from pixelperfect.url_utils import is_valid_url, normalize_url, url_slug

URL = "https://example.com"


class TestClassifyNavigationError:
    """Tests for mapping Chromium net errors onto the taxonomy."""

    def test_dns(self):
        error = classify_navigation_error(URL, PlaywrightError("net::ERR_NAME_NOT_RESOLVED at https://example.com"))
        assert isinstance(error, DnsError)
        assert error.code == "DNS_ERROR"
        assert error.status_code == 400
        assert error.url == URL
        assert "Could not resolve hostname" in error.message

    @pytest.mark.parametrize("signature", [
        "ERR_CONNECTION_REFUSED", "ERR_CONNECTION_RESET", "ERR_ADDRESS_UNREACHABLE", "ERR_INTERNET_DISCONNECTED",
    ])
    def test_network(self, signature):
        error = classify_navigation_error(URL, PlaywrightError(f"net::{signature}"))
        assert isinstance(error, NetworkError)
        assert error.code == "NETWORK_ERROR"

    @pytest.mark.parametrize("signature", ["ERR_SSL_PROTOCOL_ERROR", "ERR_CERT_AUTHORITY_INVALID"])
    def test_ssl(self, signature):
        error = classify_navigation_error(URL, PlaywrightError(f"net::{signature}"))
        assert isinstance(error, SslError)
        assert error.code == "SSL_ERROR"

    def test_timeout(self):
        error = classify_navigation_error(URL, PlaywrightTimeout("page.goto: Timeout 45000ms exceeded."))
        assert isinstance(error, NavigationTimeoutError)
        assert error.code == "TIMEOUT_ERROR"
        assert error.status_code == 408

    def test_crash(self):
        error = classify_navigation_error(URL, PlaywrightError("Target crashed"))
        assert isinstance(error, StabilityError)
        assert error.status_code == 500

    def test_fallback(self):
        error = classify_navigation_error(URL, PlaywrightError("net::ERR_ABORTED"))
        assert type(error) is NavigationError
        assert "ERR_ABORTED" in error.message

    def test_comparer_errors_pass_through(self):
        original = ValidationError("bad")
        assert classify_navigation_error(URL, original) is original

    def test_dns_checked_before_timeout(self):
        error = classify_navigation_error(URL, PlaywrightTimeout("Timeout: net::ERR_NAME_NOT_RESOLVED"))
        assert isinstance(error, DnsError)


class TestComparerError:
    def test_payload(self):
        payload = ValidationError("Invalid URL A: nope").to_payload()
        assert payload["error"] == "Invalid URL A: nope"
        assert payload["code"] == "VALIDATION_ERROR"
        assert payload["timestamp"].endswith("Z")

    def test_defaults(self):
        error = ComparerError("oops")
        assert error.code == "COMPARISON_FAILED"
        assert error.status_code == 500
        assert str(error) == "oops"

    def test_is_crash(self):
        assert is_crash(PlaywrightError("Target page, context or browser has been closed"))
        assert not is_crash(PlaywrightError("Element is not visible"))


class TestUrlUtils:
    """Tests for URL validation and slugs."""

    @pytest.mark.parametrize("url", ["https://example.com", "http://localhost:3000/page?q=1"])
    def test_valid(self, url):
        assert is_valid_url(url)

    @pytest.mark.parametrize("url", ["", "   ", "example.com", "ftp://example.com", "https://", None, 42])
    def test_invalid(self, url):
        assert not is_valid_url(url)

    def test_normalize(self):
        assert normalize_url("https://Example.COM/path/?b=2&a=1") == "https://example.com/path?a=1&b=2"

    def test_slug_is_stable(self):
        assert url_slug("https://example.com/") == url_slug("https://EXAMPLE.com")
        assert len(url_slug("https://example.com")) == 12
        assert url_slug("https://a.example.com") != url_slug("https://b.example.com")
