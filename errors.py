"""
Error types for the screenshot resolver

Every failure inside the resolution pipeline is one of these, and the
orchestrator downgrades all of them to "try the next strategy". Only the
API and CLI boundaries turn them into HTTP errors or result statuses.
"""

from typing import Any, Dict, Optional


class ScreenshotResolverError(Exception):
    """Base class for all resolver errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class SourceUnavailableError(ScreenshotResolverError):
    """The lookup API or the product page could not be reached (network, timeout, HTTP error)"""

    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message, {"status_code": status_code, "url": url})
        self.status_code = status_code
        self.url = url


class NotFoundError(SourceUnavailableError):
    """The subject does not exist at the source (HTTP 404 or empty lookup)"""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message, status_code=404, url=url)


class ParseFailureError(ScreenshotResolverError):
    """A response or page could not be parsed into the expected shape"""

    def __init__(self, message: str, data_type: str = "data"):
        super().__init__(message, {"data_type": data_type})
        self.data_type = data_type
