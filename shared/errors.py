"""
Shared error handling for the Governance Policy Engine.
"""

from typing import Dict, Any, Optional

from opentelemetry import trace
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class PolicyEngineException(Exception):
    """Base exception for the policy engine."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
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


class ValidationError(PolicyEngineException):
    """Evaluation request failed validation."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class PolicyStoreError(PolicyEngineException):
    """Policy store unreachable, failing or timed out."""

    def __init__(self, message: str = "Policy store error", details: Optional[Dict[str, Any]] = None):
        super().__init__("POLICY_STORE_ERROR", message, details)


class CacheBackendError(PolicyEngineException):
    """Cache backend unreachable, failing or timed out."""

    def __init__(self, message: str = "Cache backend error", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_BACKEND_ERROR", message, details)



class PolicyEvaluationError(PolicyEngineException):
    """Unexpected failure inside the evaluation pipeline."""

    def __init__(self, message: str = "Policy evaluation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("POLICY_EVALUATION_ERROR", message, details)
