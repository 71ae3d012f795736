"""Comparer exception hierarchy.

Every failure a caller can see is one of these classes. Low-level Playwright
and Pillow errors are re-raised as one of them with the original exception
chained as ``__cause__``.
"""

from __future__ import annotations

import time
from typing import Optional

from playwright.async_api import TimeoutError as PlaywrightTimeout


class ComparerError(Exception):
    """Base exception for all comparer errors."""

    code = "COMPARISON_FAILED"
    status_code = 500

    def __init__(self, message: str, url: Optional[str] = None) -> None:
        self.message = message
        self.url = url
        super().__init__(message)

    def to_payload(self) -> dict:
        """Render the error the way the routing layer returns it."""
        return {
            "error": self.message,
            "code": self.code,
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        }


class ValidationError(ComparerError):
    """Invalid input: URLs, options, or viewport dimensions."""

    code = "VALIDATION_ERROR"
    status_code = 400


class LifecycleError(ComparerError):
    """A browser session could not be started, or was used after disposal."""

    code = "LIFECYCLE_ERROR"


class NavigationError(ComparerError):
    """Navigation failed for a reason that fits no narrower category."""

    code = "NAVIGATION_ERROR"
    status_code = 400


class NetworkError(NavigationError):
    code = "NETWORK_ERROR"


class DnsError(NavigationError):
    code = "DNS_ERROR"


class SslError(NavigationError):
    code = "SSL_ERROR"


class NavigationTimeoutError(NavigationError):
    code = "TIMEOUT_ERROR"
    status_code = 408


class ContentError(ComparerError):
    """A required ``css:`` wait condition was never satisfied."""

    code = "CONTENT_ERROR"
    status_code = 400


class StabilityError(ComparerError):
    """The page process crashed mid-capture."""

    code = "STABILITY_ERROR"


class CaptureError(ComparerError):
    """Every applicable screenshot strategy failed."""

    code = "CAPTURE_ERROR"


class ImageProcessingError(ComparerError):
    """Raster input to the diff stage was corrupt, empty, or oversized."""

    code = "IMAGE_PROCESSING_ERROR"


class ComparisonError(ComparerError):
    """The pixel-matching step itself failed."""

    code = "COMPARISON_ERROR"


# Substring signatures of Chromium net errors, checked in order.
_NAVIGATION_SIGNATURES: tuple[tuple[str, type[NavigationError], str], ...] = (
    ("ERR_NAME_NOT_RESOLVED", DnsError, "Could not resolve hostname for {url}. Please check the URL spelling."),
    ("ERR_NAME_RESOLUTION_FAILED", DnsError, "Could not resolve hostname for {url}. Please check the URL spelling."),
    ("ERR_CONNECTION_REFUSED", NetworkError, "Connection refused to {url}. Please check if the URL is accessible."),
    ("ERR_CONNECTION_RESET", NetworkError, "Connection reset while loading {url}."),
    ("ERR_CONNECTION_CLOSED", NetworkError, "Connection closed while loading {url}."),
    ("ERR_ADDRESS_UNREACHABLE", NetworkError, "Address unreachable for {url}."),
    ("ERR_INTERNET_DISCONNECTED", NetworkError, "No network connection available to load {url}."),
    ("ERR_SSL_", SslError, "SSL/TLS error for {url}. The site may have certificate issues."),
    ("ERR_CERT_", SslError, "SSL/TLS error for {url}. The site may have certificate issues."),
)

_CRASH_SIGNATURES = ("Target crashed", "Page crashed", "Target closed", "Target page, context or browser has been closed")


def is_crash(exc: BaseException) -> bool:
    """Return True if *exc* looks like the page process died."""
    text = str(exc)
    return any(sig in text for sig in _CRASH_SIGNATURES)


def classify_navigation_error(url: str, exc: BaseException) -> ComparerError:
    """Map a Playwright navigation failure onto the error taxonomy."""
    if isinstance(exc, ComparerError):
        return exc

    text = str(exc)
    for signature, error_cls, template in _NAVIGATION_SIGNATURES:
        if signature in text:
            return error_cls(template.format(url=url), url=url)

    if isinstance(exc, PlaywrightTimeout) or "timeout" in text.lower():
        return NavigationTimeoutError(
            f"Navigation timeout for {url}. The site may be slow or unresponsive.", url=url,
        )
    if is_crash(exc):
        return StabilityError(f"Page crashed while loading {url}: {text}", url=url)
    return NavigationError(f"Navigation failed for {url}: {text}", url=url)
