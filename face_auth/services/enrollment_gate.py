"""
Enrollment gate: duplicate detection before an embedding is persisted.

A freshly averaged capture is compared against every enrolled identity,
the target included. A face that already belongs to another identity is
refused, as is a second enrollment of the same identity. Duplicate
thresholds are stricter than the recognition thresholds.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

import numpy as np

from face_auth.clients.identity_store import IdentityStore
from face_auth.models.internal_models import (
    EnrollmentOutcome,
    Identity,
    MatchMode,
    MatchResult,
    RejectionReason,
)
from face_auth.services.matcher import IdentityMatcher, ScoredCandidate
from face_auth.services.vector_math import as_vector, cosine_similarity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DuplicatePolicy:
    """Tiered thresholds for "same physical face" decisions."""

    similarity_high: float = 0.82  # duplicate outright above this
    similarity_mid: float = 0.75  # duplicate above this if the re-check confirms
    confirm_similarity: float = 0.78  # re-check threshold for the mid tier
    distance_threshold: float = 1.05
    require_distance: bool = True

    @classmethod
    def from_settings(cls, settings) -> "DuplicatePolicy":
        return cls(
            similarity_high=settings.duplicate_similarity_high,
            similarity_mid=settings.duplicate_similarity_mid,
            confirm_similarity=settings.duplicate_confirm_similarity,
            distance_threshold=settings.duplicate_distance_threshold,
            require_distance=settings.duplicate_require_distance,
        )


@dataclass
class GateDecision:
    """Duplicate check result before anything is written."""

    match: MatchResult
    duplicate_of: Optional[Identity] = None
    rejection: Optional[RejectionReason] = None

    @property
    def allowed(self) -> bool:
        return self.rejection is None


class EnrollmentGate:
    """Decides whether an averaged capture may be persisted for its target."""

    def __init__(
        self,
        store: IdentityStore,
        policy: Optional[DuplicatePolicy] = None,
        matcher: Optional[IdentityMatcher] = None,
    ):
        self.store = store
        self.policy = policy or DuplicatePolicy()
        self.matcher = matcher or IdentityMatcher(mode=MatchMode.SIMILARITY)
        # Held across snapshot, scan, decision and persist.
        self._lock = asyncio.Lock()

    def _confirmation(self, scored: ScoredCandidate, candidate: np.ndarray, samples: Sequence) -> float:
        if samples:
            return max(cosine_similarity(sample, scored.identity.embedding) for sample in samples)
        return cosine_similarity(candidate, scored.identity.embedding)

    def is_same_face(self, scored: ScoredCandidate, candidate, samples: Sequence = ()) -> bool:
        """Apply the tiered duplicate policy to one scored identity."""
        policy = self.policy

        if scored.similarity > policy.similarity_high:
            same = True
        elif scored.similarity > policy.similarity_mid:
            confirmation = self._confirmation(scored, as_vector(candidate), samples)
            logger.debug(f"Mid-tier similarity for {scored.identity.identity_id}, confirmation={confirmation:.4f}")
            same = confirmation > policy.confirm_similarity
        else:
            same = False

        if same and policy.require_distance:
            same = scored.distance < policy.distance_threshold

        return same

    def decide(
        self,
        candidate,
        target: Identity,
        identities: List[Identity],
        samples: Sequence = (),
        allow_overwrite: bool = False,
    ) -> GateDecision:
        """
        Run duplicate detection against a snapshot of identities.

        Every identity that clears the duplicate policy is considered; a
        match on any identity other than the target rejects the commit even
        when overwriting the target is allowed.

        Args:
            candidate: Averaged, normalised embedding to enroll
            target: Identity the embedding is meant for
            identities: Snapshot of all stored identities
            samples: Individual captures behind the average, used for the re-check
            allow_overwrite: Permit re-enrolling the target itself

        Returns:
            GateDecision with the match that decided it and any rejection
        """
        ranked = self.matcher.rank(candidate, identities, MatchMode.SIMILARITY)

        if not ranked:
            return GateDecision(match=MatchResult(
                identity=None,
                similarity=None,
                distance=None,
                accepted=False,
                mode=MatchMode.SIMILARITY,
                candidates_scanned=0,
            ))

        same = [scored for scored in ranked if self.is_same_face(scored, candidate, samples)]
        other = next((s for s in same if s.identity.identity_id != target.identity_id), None)
        own = next((s for s in same if s.identity.identity_id == target.identity_id), None)

        def _match(scored: Optional[ScoredCandidate]) -> MatchResult:
            scored = scored or ranked[0]
            return MatchResult(
                identity=scored.identity if same else None,
                similarity=scored.similarity,
                distance=scored.distance,
                accepted=bool(same),
                mode=MatchMode.SIMILARITY,
                candidates_scanned=len(ranked),
            )

        # Another identity with this face blocks the commit, overwrite or not
        if other is not None:
            logger.warning(
                f"Face for {target.identity_id} already enrolled as {other.identity.identity_id} "
                f"(similarity={other.similarity:.4f}, distance={other.distance:.4f})"
            )
            return GateDecision(
                match=_match(other),
                duplicate_of=other.identity,
                rejection=RejectionReason.DUPLICATE_OF_OTHER,
            )

        if own is None:
            return GateDecision(match=_match(None))

        if allow_overwrite:
            logger.info(f"Re-enrolling {target.identity_id} over its existing embedding")
            return GateDecision(match=_match(own))

        logger.info(f"Identity {target.identity_id} is already enrolled")
        return GateDecision(
            match=_match(own),
            duplicate_of=own.identity,
            rejection=RejectionReason.ALREADY_ENROLLED,
        )

    async def check(
        self,
        candidate,
        target: Identity,
        samples: Sequence = (),
        allow_overwrite: bool = False,
    ) -> GateDecision:
        """Duplicate decision against the current store contents; writes nothing."""
        identities = await self.store.get_all()
        return self.decide(candidate, target, identities, samples, allow_overwrite)

    async def commit(
        self,
        candidate,
        target: Identity,
        samples: Sequence = (),
        photo_ref: Optional[str] = None,
        allow_overwrite: bool = False,
        should_commit: Optional[Callable[[], bool]] = None,
    ) -> Optional[EnrollmentOutcome]:
        """
        Check for duplicates and persist the embedding if none is found.

        The gate lock is held from the identity snapshot through the write, so
        concurrent commits see each other's results.

        Args:
            candidate: Averaged, normalised embedding
            target: Identity to enroll
            samples: Individual captures behind the average
            photo_ref: Optional photo reference stored with the enrollment
            allow_overwrite: Permit re-enrolling the target itself
            should_commit: Checked right before writing; False aborts the write

        Returns:
            EnrollmentOutcome, or None when should_commit vetoed the write
        """
        candidate = as_vector(candidate)

        async with self._lock:
            identities = await self.store.get_all()
            decision = self.decide(candidate, target, identities, samples, allow_overwrite)

            if not decision.allowed:
                return EnrollmentOutcome(
                    accepted=False,
                    identity=target,
                    rejection=decision.rejection,
                    duplicate_of=decision.duplicate_of,
                    match=decision.match,
                )

            if should_commit is not None and not should_commit():
                logger.info(f"Enrollment commit for {target.identity_id} cancelled before persist")
                return None

            current = next((i for i in identities if i.identity_id == target.identity_id), target)
            enrolled = replace(
                current,
                embedding=candidate.copy(),
                photo_ref=photo_ref if photo_ref is not None else current.photo_ref,
                enrolled_at=datetime.now(timezone.utc),
            )
            stored = await self.store.persist(enrolled)

        logger.info(f"Enrollment saved for {stored.identity_id} ({stored.name})")
        return EnrollmentOutcome(accepted=True, identity=stored, match=decision.match)
