"""Internal data models for the face authentication microservice."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional

import numpy as np


class MatchMode(str, Enum):
    """Ranking mode used when scanning enrolled identities."""

    SIMILARITY = "similarity"  # maximum cosine similarity wins
    DISTANCE = "distance"  # minimum euclidean distance wins


class SessionState(str, Enum):
    """States of a multi-shot enrollment capture session."""

    IDLE = "idle"
    CAPTURING = "capturing"
    COMMITTING = "committing"
    DONE = "done"


class RejectionReason(str, Enum):
    """Why an enrollment commit was refused."""

    DUPLICATE_OF_OTHER = "duplicate_of_other"
    ALREADY_ENROLLED = "already_enrolled"


@dataclass
class Identity:
    """Enrollable identity (one roster entry)."""

    identity_id: str  # Primary key
    name: str
    embedding: Optional[np.ndarray] = None  # None until enrolled
    photo_ref: Optional[str] = None
    present: bool = False
    enrolled_at: Optional[datetime] = None

    def __post_init__(self):
        """Coerce the stored embedding to a flat float vector."""
        if self.embedding is not None:
            embedding = np.asarray(self.embedding, dtype=np.float64)
            if embedding.ndim != 1:
                raise ValueError(f"Embedding must be one-dimensional, got shape {embedding.shape}")
            self.embedding = embedding

    @property
    def is_enrolled(self) -> bool:
        return self.embedding is not None

    def snapshot(self) -> "Identity":
        """Return a copy that shares no mutable state with this record."""
        embedding = None if self.embedding is None else self.embedding.copy()
        return replace(self, embedding=embedding)


@dataclass
class MatchResult:
    """Outcome of scanning a probe embedding against enrolled identities."""

    identity: Optional[Identity]
    similarity: Optional[float]
    distance: Optional[float]
    accepted: bool
    mode: MatchMode
    candidates_scanned: int = 0

    @property
    def no_enrolled_identities(self) -> bool:
        return self.candidates_scanned == 0


@dataclass
class EnrollmentOutcome:
    """Decision of the enrollment gate for one averaged capture."""

    accepted: bool
    identity: Identity
    rejection: Optional[RejectionReason] = None
    duplicate_of: Optional[Identity] = None
    match: Optional[MatchResult] = None


@dataclass
class CaptureResult:
    """What happened to a single offered capture."""

    accepted: bool
    state: SessionState
    captured: int
    capacity: int
    reason: Optional[str] = None  # not_capturing | too_soon | full | extraction_failed
    outcome: Optional[EnrollmentOutcome] = None


@dataclass
class SessionStatus:
    """Point-in-time view of an enrollment session."""

    session_id: str
    state: SessionState
    captured: int
    capacity: int
    target: Optional[Identity] = None
    last_outcome: Optional[EnrollmentOutcome] = field(default=None, repr=False)
