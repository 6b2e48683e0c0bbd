"""
Custom exception classes and error handling utilities.
"""

from typing import Optional, Dict, Any
import traceback


class DirectoryCrawlerError(Exception):
    """Base exception for all directory crawler errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class CrawlerError(DirectoryCrawlerError):
    """Exception raised during crawling operations."""
    pass


class FetchError(CrawlerError):
    """Base class for failures of a single fetch."""

    def __init__(self, message: str, url: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, {"url": url, **(details or {})})
        self.url = url


class BlockedError(FetchError):
    """Raised when the target answers with a blocking status (403/429)."""

    def __init__(self, url: str, status_code: int, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"Blocked (HTTP {status_code})",
            url,
            {"status_code": status_code, **(details or {})}
        )
        self.status_code = status_code


class FetchTimeoutError(FetchError):
    """Raised when a fetch exceeds its deadline."""
    pass


class NetworkError(FetchError):
    """Raised for any other transport failure."""
    pass


class ParseError(DirectoryCrawlerError):
    """Exception raised for a malformed structured-data block."""
    pass


class MalformedUrlError(DirectoryCrawlerError):
    """Exception raised when an absolute or paginated URL cannot be built."""
    pass


class ConfigurationError(DirectoryCrawlerError):
    """Exception raised for configuration-related issues."""
    pass


class ValidationError(DirectoryCrawlerError):
    """Exception raised for data validation failures."""
    pass


def is_degrading_failure(error: Exception) -> bool:
    """Whether a failure should count as a blocked/timed-out fetch."""
    return isinstance(error, (BlockedError, FetchTimeoutError))


def handle_error(
    error: Exception,
    logger,
    context: Optional[Dict[str, Any]] = None,
    reraise: bool = True
) -> None:
    """
    Handle and log errors with context information.

    Args:
        error: The exception that occurred
        logger: Logger instance to use for logging
        context: Additional context information
        reraise: Whether to reraise the exception after logging
    """
    error_context = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        **(context or {})
    }

    if isinstance(error, DirectoryCrawlerError):
        error_context.update(error.details)

    logger.error(f"Error occurred: {error_context}")
    logger.debug(traceback.format_exc())

    if reraise:
        raise error
