"""
Error taxonomy for the decision pipeline.

Every error carries a stable ``code`` for programmatic handling and the HTTP
status the API layer renders it with.
"""

from typing import Any, Dict, Optional


class PipelineError(Exception):
    """
    Base class for all pipeline errors.

    Attributes:
        code: Stable error code for programmatic handling
        message: Human-readable error description
        details: Optional structured context
        status_code: HTTP status used when surfaced through the API
    """

    code = "SERVER_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[str] = None,
    ):
        if code is not None:
            self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"{self.code}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON serialization."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class Unauthorized(PipelineError):
    """Credential missing, expired or revoked."""

    code = "UNAUTHORIZED"
    status_code = 401


class Forbidden(PipelineError):
    """Caller lacks access to the resource."""

    code = "FORBIDDEN"
    status_code = 403


class NotFound(PipelineError):
    code = "NOT_FOUND"
    status_code = 404


class RateLimited(PipelineError):
    """Upstream platform quota exhausted."""

    code = "RATE_LIMITED"
    status_code = 429

    def __init__(
        self,
        message: str,
        retry_after: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.retry_after = retry_after
        details = dict(details or {})
        if retry_after is not None:
            details.setdefault("retry_after", retry_after)
        super().__init__(message, details=details)


class ServiceUnavailable(PipelineError):
    """Transient upstream failure that survived every retry."""

    code = "SERVICE_UNAVAILABLE"
    status_code = 503


class LimitExceeded(PipelineError):
    """Extraction governor refused to dispatch another call."""

    code = "LIMIT_EXCEEDED"
    status_code = 429

    def __init__(
        self,
        message: str,
        retry_after: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.retry_after = retry_after
        details = dict(details or {})
        if retry_after is not None:
            details.setdefault("retry_after", retry_after)
        super().__init__(message, details=details)


class Conflict(PipelineError):
    """A conditional state transition lost, or the entity is in the wrong state."""

    code = "CONFLICT"
    status_code = 409

    def __init__(
        self,
        message: str,
        current_status: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.current_status = current_status
        details = dict(details or {})
        if current_status is not None:
            details.setdefault("current_status", current_status)
        super().__init__(message, details=details)


class ValidationError(PipelineError):
    code = "VALIDATION_ERROR"
    status_code = 422


class ExtractionError(PipelineError):
    """The LLM provider returned something unusable or is not configured."""

    code = "EXTRACTION_ERROR"
    status_code = 502
