"""Error types for dbcrawl."""

from enum import Enum
from typing import Optional, Dict, Any


class CrawlError(Exception):
    """Base exception for crawl errors."""

    def __init__(self, message: str, code: str = "CRAWL_ERROR", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to a dictionary for structured reporting."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigError(CrawlError):
    """Invalid or incomplete configuration, raised before any connection attempt."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="CONFIG_ERROR", details=details)


class ConnectionFailure(str, Enum):
    """Why a connection could not be established."""
    INVALID_URL = "invalid_url"
    NO_DRIVER = "no_driver"
    CONNECT_FAILED = "connect_failed"


class ConnectionError(CrawlError):
    """Error connecting to the database."""

    def __init__(
        self,
        message: str,
        reason: ConnectionFailure = ConnectionFailure.CONNECT_FAILED,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = dict(details or {})
        details.setdefault("reason", reason.value)
        CrawlError.__init__(self, message, code="CONNECTION_ERROR", details=details)
        self.reason = reason


class InvalidURLError(ConnectionError, ConfigError):
    """Connection URL is blank or still holds unresolved placeholders."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        ConnectionError.__init__(self, message, reason=ConnectionFailure.INVALID_URL, details=details)


class NoDriverError(ConnectionError):
    """No registered driver accepts the connection URL."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, reason=ConnectionFailure.NO_DRIVER, details=details)


class ConnectFailedError(ConnectionError):
    """The driver rejected the connection (network, authentication, ...)."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, reason=ConnectionFailure.CONNECT_FAILED, details=details)


class CategoryUnsupported(CrawlError):
    """The vendor does not provide a metadata category.

    Recovered by the crawler: the category yields no data.
    """

    def __init__(self, category: str, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details.setdefault("category", category)
        super().__init__(
            message or f"{category} is not supported",
            code="CATEGORY_UNSUPPORTED",
            details=details,
        )
        self.category = category


class MergeInconsistency(CrawlError):
    """A cross-reference could not be resolved while merging."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="MERGE_INCONSISTENCY", details=details)


class CrawlFailure(CrawlError):
    """Base class for errors that end a crawl in the FAILED state."""

    def __init__(
        self,
        message: str,
        code: str = "CRAWL_FAILED",
        category: Optional[str] = None,
        vendor: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = dict(details or {})
        if category:
            details.setdefault("category", category)
        if vendor:
            details.setdefault("vendor", vendor)
        super().__init__(message, code=code, details=details)
        self.category = category
        self.vendor = vendor


class CategoryRetrievalError(CrawlFailure):
    """Retrieval of a required category, or of a vendor override query, failed."""

    def __init__(
        self,
        category: str,
        vendor: Optional[str] = None,
        cause: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = dict(details or {})
        if cause is not None:
            details.setdefault("cause", f"{type(cause).__name__}: {cause}")
        message = f"Could not retrieve {category}"
        if vendor:
            message = f"{message} for {vendor}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(
            message,
            code="CATEGORY_RETRIEVAL_ERROR",
            category=category,
            vendor=vendor,
            details=details,
        )


class CrawlCancelledError(CrawlFailure):
    """The crawl was cancelled or ran past its deadline."""

    def __init__(self, message: str = "Crawl cancelled", category: Optional[str] = None, vendor: Optional[str] = None):
        super().__init__(message, code="CRAWL_CANCELLED", category=category, vendor=vendor)


def format_error_for_display(error: Exception) -> str:
    """Format an error for display on the command line."""
    if isinstance(error, CrawlError):
        lines = [f"Error ({error.code}): {error.message}"]
        for key, value in error.details.items():
            if key == "cause":
                continue
            lines.append(f"  {key}: {value}")
        return "\n".join(lines)
    return f"Error: {str(error)}"
