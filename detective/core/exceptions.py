"""Exception hierarchy for URL Metric collection.

This module provides an exception hierarchy that:
1. Categorizes errors by kind (validation, authorization)
2. Supports automatic HTTP status code mapping
3. Enables structured error responses with machine-readable codes
"""

from __future__ import annotations

from typing import Any


class DetectiveError(Exception):
    """Base exception for all application-specific errors."""

    default_message: str = "An unexpected error occurred"
    default_error_code: str = "internal_error"
    default_status_code: int = 500

    def __init__(
        self,
        message: str | None = None,
        *,
        error_code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.error_code = error_code or self.default_error_code
        self.status_code = status_code or self.default_status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "code": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# Validation Errors (400)
class ValidationError(DetectiveError):
    default_message = "Validation failed"
    default_error_code = "rest_invalid_param"
    default_status_code = 400


class InvalidViewportWidthError(ValidationError, ValueError):
    """Raised when a viewport width is not a positive integer or is outside a group's range."""

    default_message = "Viewport width must be a positive integer"
    default_error_code = "invalid_viewport_width"

    def __init__(
        self,
        message: str | None = None,
        *,
        viewport_width: Any = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {}) or {}
        if viewport_width is not None:
            details["viewport_width"] = str(viewport_width)[:100]
        super().__init__(message, details=details, **kwargs)


class UrlMetricValidationError(ValidationError):
    default_message = "Failed to validate URL Metric"

    def __init__(
        self,
        message: str | None = None,
        *,
        field: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {}) or {}
        if field:
            details["field"] = field
        super().__init__(message, details=details, **kwargs)


class InvalidSlugError(ValidationError):
    default_message = "Invalid page identity slug"


# Authorization Errors (403)
class AuthorizationError(DetectiveError):
    default_message = "Access denied"
    default_error_code = "access_denied"
    default_status_code = 403


class InvalidHmacError(AuthorizationError):
    default_message = "URL Metrics HMAC verification failure"
    default_error_code = "invalid_hmac"


class CrossOriginForbiddenError(AuthorizationError):
    default_message = "Cross-origin requests are not allowed for this endpoint"
    default_error_code = "rest_cross_origin_forbidden"


class StorageLockedError(AuthorizationError):
    default_message = "URL Metric storage is presently locked for the current client"
    default_error_code = "url_metric_storage_locked"


class UrlMetricGroupCompleteError(AuthorizationError):
    default_message = "The URL Metric group for the provided viewport is already complete"
    default_error_code = "url_metric_group_complete"

    def __init__(
        self,
        message: str | None = None,
        *,
        minimum_viewport_width: int | None = None,
        maximum_viewport_width: int | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {}) or {}
        if minimum_viewport_width is not None:
            details["minimum_viewport_width"] = minimum_viewport_width
        details["maximum_viewport_width"] = maximum_viewport_width
        super().__init__(message, details=details, **kwargs)


class PrimingNotAllowedError(AuthorizationError):
    default_message = "Priming requests require a valid priming key"
    default_error_code = "priming_forbidden"


# Client-side extension guard errors
class ReservedKeyError(ValueError):
    """Raised when an extension tries to overwrite a reserved URL Metric key."""

    def __init__(self, key: str, target: str) -> None:
        self.key = key
        self.target = target
        super().__init__(f"Disallowed setting of key '{key}' on {target}.")


class UnknownElementError(ValueError):
    """Raised when an extension references an XPath that was not observed."""

    def __init__(self, xpath: str) -> None:
        self.xpath = xpath
        super().__init__(f"Unknown element with XPath: {xpath}")
