"""Data models for the face authentication microservice."""

from .api_models import (
    IdentityCreateRequest,
    IdentityResponse,
    EnrollmentStartRequest,
    EnrollmentStartResponse,
    EnrollmentOutcomeResponse,
    SampleRequest,
    SampleResponse,
    SessionStatusResponse,
    RecognitionRequest,
    RecognitionResponse,
    HealthResponse,
    ErrorResponse
)
from .internal_models import (
    Identity,
    MatchMode,
    MatchResult,
    SessionState,
    RejectionReason,
    EnrollmentOutcome,
    CaptureResult,
    SessionStatus
)

__all__ = [
    "IdentityCreateRequest",
    "IdentityResponse",
    "EnrollmentStartRequest",
    "EnrollmentStartResponse",
    "EnrollmentOutcomeResponse",
    "SampleRequest",
    "SampleResponse",
    "SessionStatusResponse",
    "RecognitionRequest",
    "RecognitionResponse",
    "HealthResponse",
    "ErrorResponse",
    "Identity",
    "MatchMode",
    "MatchResult",
    "SessionState",
    "RejectionReason",
    "EnrollmentOutcome",
    "CaptureResult",
    "SessionStatus"
]
