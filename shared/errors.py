"""
Shared error handling for Switchboard services.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field
from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    status: str = "error"
    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class SwitchboardException(Exception):
    """Base exception for Switchboard services."""

    status_code: int = 400

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        # Get trace ID from current span
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class FlagNotFound(SwitchboardException):
    """Requested flag key does not exist in the project."""

    status_code = 404

    def __init__(self, flag_key: str, project_id: Optional[str] = None):
        details = {"flag_key": flag_key}
        if project_id is not None:
            details["project_id"] = project_id
        super().__init__("FLAG_NOT_FOUND", f"Flag '{flag_key}' not found", details)
        self.flag_key = flag_key


class EnvironmentNotFound(SwitchboardException):
    """Flag exists but has no settings for the requested environment."""

    status_code = 404

    def __init__(self, environment: str, flag_key: str):
        super().__init__(
            "ENVIRONMENT_NOT_FOUND",
            f"Environment '{environment}' not found for flag '{flag_key}'",
            {"environment": environment, "flag_key": flag_key}
        )
        self.environment = environment
        self.flag_key = flag_key


class VariationNotFound(SwitchboardException):
    """Variation key does not exist in the flag's environment settings."""

    status_code = 404

    def __init__(self, variation_key: str, flag_key: str, environment: str):
        super().__init__(
            "VARIATION_NOT_FOUND",
            f"Variation with key '{variation_key}' not found",
            {"variation_key": variation_key, "flag_key": flag_key, "environment": environment}
        )


class InvalidRuleValue(SwitchboardException):
    """A rule payload fails its type-specific shape check."""

    def __init__(self, rule_type: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "INVALID_RULE_VALUE",
            f"Invalid value for rule type {rule_type}: {message}",
            {"rule_type": rule_type, **(details or {})}
        )
        self.rule_type = rule_type


class AuthenticationError(SwitchboardException):
    """Authentication-related errors."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class ValidationError(SwitchboardException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class ServiceError(SwitchboardException):
    """Service-related errors."""

    status_code = 500

    def __init__(self, message: str = "Service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERVICE_ERROR", message, details)


class ExternalServiceError(SwitchboardException):
    """External service errors."""

    status_code = 502

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)
