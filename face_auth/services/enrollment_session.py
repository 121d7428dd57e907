"""
Multi-shot enrollment capture session.

A session collects a fixed number of embeddings for one target identity,
spaced at least ``min_interval_ms`` apart, then averages and normalises
them once and hands the result to the enrollment gate.

    IDLE --start--> CAPTURING --Nth capture--> COMMITTING --accepted--> DONE
                                                    |
                                                    +--rejected--> IDLE

``cancel()`` returns any state to IDLE without writing anything. A commit
that finishes after a cancel or restart leaves the newer state alone.
"""

import asyncio
import logging
import time
from typing import Any, List, Optional

import numpy as np

from face_auth.models.internal_models import (
    CaptureResult,
    EnrollmentOutcome,
    Identity,
    SessionState,
    SessionStatus,
)
from face_auth.services.embedding_service import EmbeddingService, ExtractionFailedError
from face_auth.services.enrollment_gate import EnrollmentGate
from face_auth.services.vector_math import LengthMismatchError, as_vector, average, l2_normalize

logger = logging.getLogger(__name__)


def now_ms() -> int:
    """Monotonic clock in milliseconds."""
    return int(time.monotonic() * 1000)


class EnrollmentSession:
    """Accumulates captures for one identity and commits them through the gate."""

    def __init__(
        self,
        gate: EnrollmentGate,
        capacity: int = 3,
        min_interval_ms: int = 1500,
    ):
        """
        Initialize an idle session.

        Args:
            gate: Gate deciding and persisting the final embedding
            capacity: Number of captures averaged into one enrollment
            min_interval_ms: Minimum spacing between accepted captures
        """
        if capacity < 1:
            raise ValueError(f"Session capacity must be positive, got {capacity}")

        self.gate = gate
        self.capacity = capacity
        self.min_interval_ms = min_interval_ms

        self.state = SessionState.IDLE
        self.target: Optional[Identity] = None
        self.allow_overwrite = False
        self.last_outcome: Optional[EnrollmentOutcome] = None

        self._samples: List[np.ndarray] = []
        self._last_capture_ms: Optional[int] = None
        self._photo_ref: Optional[str] = None
        self._generation = 0
        self._lock = asyncio.Lock()

    @property
    def captured(self) -> int:
        return len(self._samples)

    @property
    def samples(self) -> List[np.ndarray]:
        return [s.copy() for s in self._samples]

    def start(self, target: Identity, allow_overwrite: bool = False) -> None:
        """Begin capturing for a target identity, discarding anything held."""
        self._generation += 1
        self._samples = []
        self._last_capture_ms = None
        self._photo_ref = None
        self.target = target
        self.allow_overwrite = allow_overwrite
        self.last_outcome = None
        self.state = SessionState.CAPTURING
        logger.info(f"Enrollment capture started for {target.identity_id} ({self.capacity} samples)")

    def cancel(self) -> None:
        """Return to IDLE and drop partial captures. Safe at any time."""
        self._generation += 1
        self._samples = []
        self._last_capture_ms = None
        self._photo_ref = None
        if self.state != SessionState.IDLE:
            logger.info(f"Enrollment session for {self.target.identity_id if self.target else '?'} cancelled")
        self.state = SessionState.IDLE

    def status(self, session_id: str = "") -> SessionStatus:
        return SessionStatus(
            session_id=session_id,
            state=self.state,
            captured=self.captured,
            capacity=self.capacity,
            target=self.target,
            last_outcome=self.last_outcome,
        )

    def _result(self, accepted: bool, reason: Optional[str] = None,
                outcome: Optional[EnrollmentOutcome] = None) -> CaptureResult:
        return CaptureResult(
            accepted=accepted,
            state=self.state,
            captured=self.captured,
            capacity=self.capacity,
            reason=reason,
            outcome=outcome,
        )

    async def offer(self, vector, now: Optional[int] = None, photo_ref: Optional[str] = None) -> CaptureResult:
        """
        Offer one capture to the session.

        Captures are ignored outside CAPTURING, when the session is full, or
        when less than ``min_interval_ms`` has elapsed since the last accepted
        capture. The capture that fills the session runs the commit before
        this call returns.

        Args:
            vector: Raw embedding from the model
            now: Capture time in milliseconds; defaults to a monotonic clock
            photo_ref: Optional reference to the frame the embedding came from

        Returns:
            CaptureResult; ``outcome`` is set when this capture completed the session

        Raises:
            LengthMismatchError: If the capture differs in length from earlier ones
            Exception: Store failures during commit propagate; the session is left IDLE
        """
        now = now_ms() if now is None else now

        async with self._lock:
            if self.state != SessionState.CAPTURING:
                return self._result(False, "not_capturing")

            if self.captured >= self.capacity:
                return self._result(False, "full")

            if self._last_capture_ms is not None and now - self._last_capture_ms <= self.min_interval_ms:
                logger.debug(f"Capture ignored, only {now - self._last_capture_ms}ms since last")
                return self._result(False, "too_soon")

            vector = as_vector(vector)
            if self._samples and vector.shape != self._samples[0].shape:
                raise LengthMismatchError(
                    f"Capture has {vector.shape[0]} values, session holds {self._samples[0].shape[0]}"
                )

            self._samples.append(vector)
            self._last_capture_ms = now
            if photo_ref is not None:
                self._photo_ref = photo_ref
            logger.info(f"Captured {self.captured}/{self.capacity} for {self.target.identity_id}")

            if self.captured < self.capacity:
                return self._result(True)

            self.state = SessionState.COMMITTING
            outcome = await self._commit()
            return self._result(True, None if outcome else "cancelled", outcome)

    async def offer_image(
        self,
        image: Any,
        embedding_service: EmbeddingService,
        now: Optional[int] = None,
        photo_ref: Optional[str] = None,
    ) -> CaptureResult:
        """Extract an embedding from a face image and offer it; failed frames are dropped."""
        if self.state != SessionState.CAPTURING:
            return self._result(False, "not_capturing")

        try:
            vector = embedding_service.extract(image)
        except ExtractionFailedError as e:
            logger.warning(f"Dropping frame, embedding extraction failed: {e}")
            return self._result(False, "extraction_failed")

        return await self.offer(vector, now=now, photo_ref=photo_ref)

    async def _commit(self) -> Optional[EnrollmentOutcome]:
        generation = self._generation
        samples = list(self._samples)
        target = self.target

        representative = l2_normalize(average(samples))

        try:
            outcome = await self.gate.commit(
                representative,
                target,
                samples=samples,
                photo_ref=self._photo_ref,
                allow_overwrite=self.allow_overwrite,
                should_commit=lambda: self._generation == generation,
            )
        except Exception as e:
            logger.error(f"Enrollment commit failed for {target.identity_id}: {e}")
            self._reset_to_idle(generation)
            raise

        if outcome is None:
            return None

        if outcome.accepted:
            logger.info(f"Enrollment committed for {target.identity_id}")
        else:
            logger.warning(
                f"Enrollment rejected for {target.identity_id}: {outcome.rejection.value}"
                + (f" ({outcome.duplicate_of.identity_id})" if outcome.duplicate_of else "")
            )

        # cancel() or start() ran during the commit and already owns the state
        if self._generation != generation:
            logger.info(f"Commit for {target.identity_id} finished after its session was reset")
            return outcome

        self.last_outcome = outcome
        if outcome.accepted:
            self.state = SessionState.DONE
            self._samples = []
        else:
            self._reset_to_idle(generation)

        return outcome

    def _reset_to_idle(self, generation: int) -> None:
        if self._generation != generation:
            return
        self._samples = []
        self._last_capture_ms = None
        self.state = SessionState.IDLE
