"""Pydantic models for API requests and responses."""

import math
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .internal_models import CaptureResult, EnrollmentOutcome, Identity, MatchResult


def _finite(v: List[float]) -> List[float]:
    if not v:
        raise ValueError('Embedding must not be empty')
    if not all(math.isfinite(x) for x in v):
        raise ValueError('Embedding must contain only finite numbers')
    return v


class IdentityCreateRequest(BaseModel):
    """Request model for provisioning a roster identity."""

    id: str = Field(..., min_length=1, max_length=64, description="Stable identity id")
    name: str = Field(..., min_length=1, max_length=200, description="Display name")


class IdentityResponse(BaseModel):
    """Identity as exposed by the API (embedding values are never returned)."""

    id: str
    name: str
    enrolled: bool
    present: bool
    photo_ref: Optional[str] = None
    enrolled_at: Optional[datetime] = None

    @classmethod
    def from_identity(cls, identity: Identity) -> "IdentityResponse":
        return cls(
            id=identity.identity_id,
            name=identity.name,
            enrolled=identity.is_enrolled,
            present=identity.present,
            photo_ref=identity.photo_ref,
            enrolled_at=identity.enrolled_at,
        )


class EnrollmentStartRequest(BaseModel):
    """Request model for opening an enrollment session."""

    identityId: Optional[str] = Field(None, description="Roster identity to enroll")
    query: Optional[str] = Field(None, description="Roster search text; first hit is enrolled")
    name: Optional[str] = Field(None, description="Name for a new identity (register policy)")
    overwrite: bool = Field(False, description="Explicitly re-enroll an enrolled identity")


class EnrollmentOutcomeResponse(BaseModel):
    """Decision taken when an enrollment session commits."""

    accepted: bool
    identity: IdentityResponse
    rejection: Optional[str] = Field(None, description="duplicate_of_other | already_enrolled")
    duplicateOf: Optional[IdentityResponse] = None
    similarity: Optional[float] = None
    distance: Optional[float] = None

    @classmethod
    def from_outcome(cls, outcome: EnrollmentOutcome) -> "EnrollmentOutcomeResponse":
        match = outcome.match
        return cls(
            accepted=outcome.accepted,
            identity=IdentityResponse.from_identity(outcome.identity),
            rejection=outcome.rejection.value if outcome.rejection else None,
            duplicateOf=IdentityResponse.from_identity(outcome.duplicate_of) if outcome.duplicate_of else None,
            similarity=match.similarity if match else None,
            distance=match.distance if match else None,
        )


class EnrollmentStartResponse(BaseModel):
    """Response model for opening an enrollment session."""

    sessionId: Optional[str] = None
    state: str
    capacity: int
    outcome: Optional[EnrollmentOutcomeResponse] = None


class SampleRequest(BaseModel):
    """Request model for offering one captured embedding."""

    embedding: List[float] = Field(..., description="Raw embedding from the face model")
    timestampMs: Optional[int] = Field(None, ge=0, description="Capture time in milliseconds")
    photoRef: Optional[str] = Field(None, description="Reference to the captured frame")

    @field_validator('embedding')
    @classmethod
    def validate_embedding(cls, v):
        return _finite(v)


class SampleResponse(BaseModel):
    """Response model for an offered capture."""

    accepted: bool
    state: str
    captured: int
    capacity: int
    reason: Optional[str] = None
    outcome: Optional[EnrollmentOutcomeResponse] = None

    @classmethod
    def from_result(cls, result: CaptureResult) -> "SampleResponse":
        return cls(
            accepted=result.accepted,
            state=result.state.value,
            captured=result.captured,
            capacity=result.capacity,
            reason=result.reason,
            outcome=EnrollmentOutcomeResponse.from_outcome(result.outcome) if result.outcome else None,
        )


class SessionStatusResponse(BaseModel):
    """Response model for enrollment session status."""

    sessionId: str
    state: str
    captured: int
    capacity: int
    target: Optional[IdentityResponse] = None


class RecognitionRequest(BaseModel):
    """Request model for recognizing a live probe embedding."""

    embedding: List[float] = Field(..., description="Probe embedding from the face model")
    mode: Optional[str] = Field(None, description="distance | similarity")

    @field_validator('embedding')
    @classmethod
    def validate_embedding(cls, v):
        return _finite(v)

    @field_validator('mode')
    @classmethod
    def validate_mode(cls, v):
        if v is not None and v not in ("distance", "similarity"):
            raise ValueError('mode must be "distance" or "similarity"')
        return v


class RecognitionResponse(BaseModel):
    """Response model for recognition; unknown faces are not errors."""

    known: bool = Field(..., description="Whether the probe matched an enrolled identity")
    identity: Optional[IdentityResponse] = None
    similarity: Optional[float] = None
    distance: Optional[float] = None
    mode: str
    enrolledCount: int = Field(..., description="Enrolled identities scanned; 0 means nobody is enrolled")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "known": True,
            "identity": {"id": "1", "name": "Gourav", "enrolled": True, "present": True},
            "similarity": 0.93,
            "distance": 0.37,
            "mode": "distance",
            "enrolledCount": 4
        }
    })

    @classmethod
    def from_match(cls, match: MatchResult) -> "RecognitionResponse":
        return cls(
            known=match.accepted,
            identity=IdentityResponse.from_identity(match.identity) if match.identity else None,
            similarity=match.similarity,
            distance=match.distance,
            mode=match.mode.value,
            enrolledCount=match.candidates_scanned,
        )


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str = Field(..., description="Service health status")
    timestamp: datetime = Field(..., description="Health check timestamp")
    version: str = Field(..., description="Service version")


class ErrorResponse(BaseModel):
    """Standard error response model."""

    error: str = Field(..., description="Error type or category")
    message: str = Field(..., description="Human-readable error message")
    correlation_id: str = Field(..., description="Request correlation ID for tracing")
    timestamp: datetime = Field(..., description="Error timestamp")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "error": "ValidationError",
            "message": "Invalid request format",
            "correlation_id": "req_123456789",
            "timestamp": "2024-01-01T12:00:00Z"
        }
    })
