"""
Shared error handling for the Cohort Eligibility Service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field
from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class CohortServiceException(Exception):
    """Base exception for cohort evaluation."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None,
                 status_code: Optional[int] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
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


class ValidationError(CohortServiceException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details, status_code=400)


class ExternalServiceError(CohortServiceException):
    """External service errors."""

    status_code = 502

    def __init__(self, service: str, message: str = "External service error",
                 details: Optional[Dict[str, Any]] = None, code: str = "EXTERNAL_SERVICE_ERROR"):
        self.service = service
        super().__init__(code, f"{service}: {message}", details)


class ResourceStoreError(ExternalServiceError):
    """The FHIR resource store failed or answered with an error status."""

    def __init__(self, message: str = "Resource store error", details: Optional[Dict[str, Any]] = None):
        super().__init__("fhir_store", message, details)


class RuleEvaluationError(ExternalServiceError):
    """The remote rule-evaluation endpoint could not produce an answer.

    Raised once retries are exhausted, the circuit is open, or the endpoint
    answered with a non-retryable status. Always aborts the cohort run.
    """

    def __init__(self, message: str = "Rule evaluation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("rule_engine", message, details, code="RULE_EVALUATION_ERROR")


class SubjectTimeoutError(CohortServiceException):
    """A subject's evaluation exceeded its time budget."""

    def __init__(self, subject_id: str, timeout_seconds: float):
        super().__init__(
            "SUBJECT_TIMEOUT",
            f"Evaluation of subject {subject_id} exceeded {timeout_seconds}s",
            {"subject": subject_id, "timeout_seconds": timeout_seconds},
            status_code=504
        )


class PseudonymizationError(CohortServiceException):
    """Pseudonymization failed; the run cannot produce consistent output."""

    def __init__(self, message: str = "Pseudonymization failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("PSEUDONYMIZATION_ERROR", message, details, status_code=500)


class DefinitionNotFoundError(CohortServiceException):
    """An eligibility definition could not be located by canonical reference."""

    def __init__(self, canonical: str):
        super().__init__(
            "DEFINITION_NOT_FOUND",
            f"Eligibility definition not found: {canonical}",
            {"canonical": canonical},
            status_code=404
        )
