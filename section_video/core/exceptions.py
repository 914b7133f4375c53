"""
Custom Exceptions
=================

Unified exception hierarchy for consistent error handling across the pipeline.
"""

from typing import Optional, Dict, Any


class SectionVideoError(Exception):
    """Base exception for all Section Video errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        self.recoverable = recoverable

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for serialization."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


class ConfigurationError(SectionVideoError):
    """Configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type
        super().__init__(message, details=details, **kwargs)


class ValidationError(SectionVideoError):
    """Input validation errors, raised before anything is persisted."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        constraint: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]
        if constraint:
            details["constraint"] = constraint
        super().__init__(message, details=details, **kwargs)


class ProviderError(SectionVideoError):
    """Provider/API-related errors."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if provider:
            details["provider"] = provider
        if status_code:
            details["status_code"] = status_code
        if response_body:
            # Truncate large responses
            details["response_body"] = response_body[:500] if len(response_body) > 500 else response_body

        recoverable = kwargs.pop("recoverable", status_code in (429, 500, 502, 503, 504) if status_code else False)
        super().__init__(message, recoverable=recoverable, details=details, **kwargs)


class ProviderTimeout(ProviderError):
    """Provider did not answer within the configured timeout."""

    def __init__(
        self,
        message: str,
        timeout_seconds: Optional[float] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if timeout_seconds:
            details["timeout_seconds"] = timeout_seconds
        super().__init__(message, recoverable=True, details=details, **kwargs)


class DispatchRejected(SectionVideoError):
    """The generation provider refused a unit synchronously."""

    def __init__(
        self,
        message: str,
        unit_id: Optional[str] = None,
        job_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if unit_id:
            details["unit_id"] = unit_id
        if job_id:
            details["job_id"] = job_id
        super().__init__(message, details=details, **kwargs)


class DispatchTimeout(DispatchRejected):
    """The provider did not accept the job within the acceptance timeout."""

    def __init__(
        self,
        message: str,
        timeout_seconds: Optional[float] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if timeout_seconds:
            details["timeout_seconds"] = timeout_seconds
        super().__init__(message, details=details, **kwargs)


class SecurityError(SectionVideoError):
    """Security-related errors."""

    def __init__(
        self,
        message: str,
        security_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if security_type:
            details["security_type"] = security_type
        super().__init__(message, recoverable=False, details=details, **kwargs)


class WebhookAuthError(SecurityError):
    """Webhook signature or timestamp did not verify."""

    def __init__(self, message: str, webhook_id: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if webhook_id:
            details["webhook_id"] = webhook_id
        super().__init__(message, security_type="webhook_signature", details=details, **kwargs)


class UnknownCorrelationId(SectionVideoError):
    """A webhook referenced a prediction this system does not track."""

    def __init__(self, correlation_id: str, **kwargs):
        super().__init__(
            f"No generation job for correlation id: {correlation_id}",
            details={"correlation_id": correlation_id},
            **kwargs,
        )
        self.correlation_id = correlation_id


class ResourceNotFoundError(SectionVideoError):
    """Resource not found errors."""

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if resource_type:
            details["resource_type"] = resource_type
        if resource_id:
            details["resource_id"] = resource_id
        super().__init__(message, recoverable=False, details=details, **kwargs)


class InvalidStateTransition(SectionVideoError):
    """A unit was asked to move to a status its current status does not allow."""

    def __init__(
        self,
        message: str,
        unit_id: Optional[str] = None,
        current_status: Optional[str] = None,
        target_status: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if unit_id:
            details["unit_id"] = unit_id
        if current_status:
            details["current_status"] = current_status
        if target_status:
            details["target_status"] = target_status
        super().__init__(message, details=details, **kwargs)


class DependencyNotReady(InvalidStateTransition):
    """The preceding unit has not reached a terminal status yet."""

    def __init__(self, message: str, blocking_unit_id: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if blocking_unit_id:
            details["blocking_unit_id"] = blocking_unit_id
        super().__init__(message, details=details, recoverable=True, **kwargs)


class EmptySetError(SectionVideoError):
    """Nothing qualified for the requested operation."""

    def __init__(self, message: str, section_id: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if section_id:
            details["section_id"] = section_id
        super().__init__(message, details=details, **kwargs)


class CompilationError(SectionVideoError):
    """The concatenation provider failed to produce an artifact."""

    def __init__(
        self,
        message: str,
        section_id: Optional[str] = None,
        unit_count: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if section_id:
            details["section_id"] = section_id
        if unit_count is not None:
            details["unit_count"] = unit_count
        super().__init__(message, details=details, **kwargs)
