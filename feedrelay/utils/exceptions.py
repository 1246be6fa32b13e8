"""
FeedRelay Custom Exceptions
==========================

Exception hierarchy for FeedRelay with error codes, context information,
and user-friendly error messages.
"""

from typing import Optional, Dict, Any
from enum import Enum


class ErrorCode(str, Enum):
    """Error codes for categorizing exceptions."""

    # Configuration errors (C001-C099)
    CONFIG_INVALID = "C001"
    CONFIG_MISSING = "C002"
    CONFIG_PARSE_ERROR = "C003"

    # Feed ingestion errors (F001-F099)
    FEED_INVALID_URL = "F001"
    FEED_FETCH_TIMEOUT = "F002"
    FEED_PARSE_ERROR = "F003"
    FEED_NETWORK_ERROR = "F004"
    FEED_ACCESS_DENIED = "F005"
    FEED_NOT_FOUND = "F006"

    # Media store errors (M001-M099)
    MEDIA_UPLOAD_REJECTED = "M001"
    MEDIA_UPLOAD_FAILED = "M002"
    MEDIA_NOT_FOUND = "M003"
    MEDIA_RESOLVE_FAILED = "M004"
    MEDIA_DOWNLOAD_FAILED = "M005"

    # Publishing errors (N001-N099)
    PUBLISH_REJECTED = "N001"
    PUBLISH_FAILED = "N002"
    PUBLISH_INVALID_PAYLOAD = "N003"

    # External service errors (E001-E099)
    EXTERNAL_SERVICE_ERROR = "E001"
    EXTERNAL_SERVICE_UNAVAILABLE = "E002"
    EXTERNAL_SERVICE_TIMEOUT = "E003"

    # System errors (S001-S099)
    SYSTEM_PERMISSION_DENIED = "S002"
    SYSTEM_MEMORY_ERROR = "S004"


class FeedRelayError(Exception):
    """Base exception for all FeedRelay errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[ErrorCode] = None,
        context: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
        recoverable: bool = False,
    ):
        """Initialize FeedRelay error.

        Args:
            message: Technical error message for logging
            error_code: Categorized error code
            context: Additional context information
            user_message: User-friendly error message
            recoverable: Whether the error is recoverable
        """
        super().__init__(message)
        self.error_code = error_code
        self.context = context or {}
        self.user_message = user_message or message
        self.recoverable = recoverable

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code.value if self.error_code else None,
            "error_message": str(self),
            "user_message": self.user_message,
            "context": self.context,
            "recoverable": self.recoverable,
        }

    def __str__(self) -> str:
        """String representation with error code."""
        if self.error_code:
            return f"[{self.error_code.value}] {super().__str__()}"
        return super().__str__()


def _passthrough(kwargs: Dict[str, Any], *consumed: str) -> Dict[str, Any]:
    return {k: v for k, v in kwargs.items() if k not in consumed}


class ConfigurationError(FeedRelayError):
    """Configuration-related errors."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        """Initialize configuration error.

        Args:
            message: Error message
            config_key: Configuration key that caused the error
            **kwargs: Additional arguments for FeedRelayError
        """
        context = kwargs.get("context", {})
        if config_key:
            context["config_key"] = config_key

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.CONFIG_INVALID),
            context=context,
            user_message=kwargs.get("user_message", f"Configuration error: {message}"),
            **_passthrough(kwargs, "context", "error_code", "user_message"),
        )


class FeedError(FeedRelayError):
    """Feed ingestion and parsing errors."""

    def __init__(self, message: str, feed_url: Optional[str] = None, **kwargs):
        """Initialize feed error.

        Args:
            message: Error message
            feed_url: Feed URL that caused the error
            **kwargs: Additional arguments for FeedRelayError
        """
        context = kwargs.get("context", {})
        if feed_url:
            context["feed_url"] = feed_url

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.FEED_NETWORK_ERROR),
            context=context,
            user_message=kwargs.get(
                "user_message", f"Feed processing failed: {message}"
            ),
            recoverable=kwargs.get("recoverable", True),
            **_passthrough(kwargs, "context", "error_code", "user_message", "recoverable"),
        )


class FeedFetchError(FeedError):
    """Feed unreachable or unparseable."""

    pass


class MediaError(FeedRelayError):
    """Remote media store errors."""

    def __init__(
        self,
        message: str,
        media_url: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs,
    ):
        """Initialize media error.

        Args:
            message: Error message
            media_url: Source URL of the media item
            status_code: HTTP status returned by the media store
            **kwargs: Additional arguments for FeedRelayError
        """
        context = kwargs.get("context", {})
        if media_url:
            context["media_url"] = media_url
        if status_code is not None:
            context["status_code"] = status_code

        self.media_url = media_url
        self.status_code = status_code

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.MEDIA_UPLOAD_FAILED),
            context=context,
            user_message=kwargs.get("user_message", "Media processing failed"),
            recoverable=kwargs.get("recoverable", True),
            **_passthrough(kwargs, "context", "error_code", "user_message", "recoverable"),
        )


class UploadError(MediaError):
    """The media store rejected an upload-from-URL request."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", ErrorCode.MEDIA_UPLOAD_REJECTED)
        kwargs.setdefault("user_message", "Media upload failed")
        super().__init__(message, **kwargs)


class ResolveError(MediaError):
    """An uploaded media item could not be located in the store."""

    def __init__(self, message: str, attempts: Optional[int] = None, **kwargs):
        context = kwargs.get("context", {})
        if attempts is not None:
            context["attempts"] = attempts
        kwargs["context"] = context
        self.attempts = attempts

        kwargs.setdefault("error_code", ErrorCode.MEDIA_RESOLVE_FAILED)
        kwargs.setdefault("user_message", "Uploaded media could not be found")
        super().__init__(message, **kwargs)


class PublishError(FeedRelayError):
    """The social API rejected a post."""

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        """Initialize publish error.

        Args:
            message: Error message
            status_code: HTTP status returned by the notes API
            **kwargs: Additional arguments for FeedRelayError
        """
        context = kwargs.get("context", {})
        if status_code is not None:
            context["status_code"] = status_code
        self.status_code = status_code

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.PUBLISH_REJECTED),
            context=context,
            user_message=kwargs.get("user_message", "Posting failed"),
            recoverable=kwargs.get("recoverable", True),
            **_passthrough(kwargs, "context", "error_code", "user_message", "recoverable"),
        )


class ExternalServiceError(FeedRelayError):
    """Transport-level failure talking to the remote API."""

    def __init__(self, message: str, endpoint: Optional[str] = None, **kwargs):
        context = kwargs.get("context", {})
        if endpoint:
            context["endpoint"] = endpoint
        self.endpoint = endpoint

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.EXTERNAL_SERVICE_ERROR),
            context=context,
            user_message=kwargs.get("user_message", "Remote service unavailable"),
            recoverable=kwargs.get("recoverable", True),
            **_passthrough(kwargs, "context", "error_code", "user_message", "recoverable"),
        )


# Exception handling utilities


def handle_exception(
    exception: Exception,
    logger,
    operation: str,
    context: Optional[Dict[str, Any]] = None,
) -> FeedRelayError:
    """Convert generic exceptions to FeedRelay exceptions with proper logging.

    Args:
        exception: Original exception
        logger: Logger instance for error logging
        operation: Operation that was being performed
        context: Additional context information

    Returns:
        FeedRelay exception with proper categorization
    """
    context = context or {}
    context["operation"] = operation
    context["original_exception_type"] = type(exception).__name__

    if isinstance(exception, FeedRelayError):
        logger.error(f"Operation '{operation}' failed: {exception}", extra=exception.to_dict())
        return exception

    elif isinstance(exception, (ConnectionError, TimeoutError)):
        error = FeedRelayError(
            message=f"Network error during {operation}: {str(exception)}",
            error_code=ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
            context=context,
            user_message="Network connection failed",
            recoverable=True,
        )

    elif isinstance(exception, PermissionError):
        error = FeedRelayError(
            message=f"Permission denied during {operation}: {str(exception)}",
            error_code=ErrorCode.SYSTEM_PERMISSION_DENIED,
            context=context,
            user_message="Access denied",
            recoverable=False,
        )

    elif isinstance(exception, MemoryError):
        error = FeedRelayError(
            message=f"Memory exhausted during {operation}: {str(exception)}",
            error_code=ErrorCode.SYSTEM_MEMORY_ERROR,
            context=context,
            user_message="System resources exhausted",
            recoverable=True,
        )

    else:
        error = FeedRelayError(
            message=f"Unexpected error during {operation}: {str(exception)}",
            context=context,
            user_message="An unexpected error occurred",
            recoverable=True,
        )

    logger.error(f"Operation '{operation}' failed: {error}", extra=error.to_dict())
    return error


def get_user_friendly_message(exception: Exception) -> str:
    """Get user-friendly error message for any exception."""
    if isinstance(exception, FeedRelayError):
        return exception.user_message

    return "An unexpected error occurred. Please try again later."
