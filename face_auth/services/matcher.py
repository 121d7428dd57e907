"""
Identity matcher: find the enrolled identity closest to a probe embedding.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

import numpy as np

from face_auth.models.internal_models import Identity, MatchMode, MatchResult
from face_auth.services.vector_math import as_vector, cosine_similarity, euclidean_distance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatcherThresholds:
    """Acceptance thresholds for recognition."""

    similarity: float = 0.55  # accept when best similarity is above this
    distance: float = 1.0  # accept when best distance is below this

    @classmethod
    def from_settings(cls, settings) -> "MatcherThresholds":
        return cls(
            similarity=settings.recognition_similarity_threshold,
            distance=settings.recognition_distance_threshold,
        )


@dataclass
class ScoredCandidate:
    """One enrolled identity scored against a probe."""

    identity: Identity
    similarity: float
    distance: float


class IdentityMatcher:
    """Scans enrolled identities for the best match of a probe embedding."""

    def __init__(
        self,
        thresholds: Optional[MatcherThresholds] = None,
        mode: MatchMode = MatchMode.DISTANCE,
    ):
        """
        Initialize the matcher.

        Args:
            thresholds: Recognition thresholds. Defaults to MatcherThresholds().
            mode: Default ranking mode for find_best
        """
        self.thresholds = thresholds or MatcherThresholds()
        self.mode = MatchMode(mode)

    def score(self, probe, candidates: Iterable[Identity]) -> List[ScoredCandidate]:
        """Score every candidate that has an embedding, in input order."""
        probe = as_vector(probe)
        scored = []
        for identity in candidates:
            if identity.embedding is None:
                continue
            scored.append(ScoredCandidate(
                identity=identity,
                similarity=cosine_similarity(probe, identity.embedding),
                distance=euclidean_distance(probe, identity.embedding),
            ))
            logger.debug(
                f"Scored {identity.identity_id}: similarity={scored[-1].similarity:.4f}, "
                f"distance={scored[-1].distance:.4f}"
            )
        return scored

    def rank(
        self,
        probe,
        candidates: Iterable[Identity],
        mode: Optional[MatchMode] = None,
    ) -> List[ScoredCandidate]:
        """Return scored candidates ordered best-first; ties keep input order."""
        mode = MatchMode(mode or self.mode)
        scored = self.score(probe, candidates)
        if mode == MatchMode.SIMILARITY:
            return sorted(scored, key=lambda c: -c.similarity)
        return sorted(scored, key=lambda c: c.distance)

    def find_best(
        self,
        probe,
        candidates: Iterable[Identity],
        mode: Optional[MatchMode] = None,
    ) -> MatchResult:
        """
        Find the best match for a probe among candidate identities.

        All candidates are scanned; the first-seen candidate wins ties.
        A best match that fails the mode's threshold is reported as unknown
        (identity None, accepted False) with its scores kept for diagnostics.

        Args:
            probe: Probe embedding
            candidates: Identities to scan, in a deterministic order
            mode: Ranking mode, defaults to the matcher's mode

        Returns:
            MatchResult for the scan

        Raises:
            LengthMismatchError: If a stored embedding differs in length from the probe
        """
        mode = MatchMode(mode or self.mode)
        probe = as_vector(probe)

        best: Optional[Identity] = None
        best_similarity = -np.inf
        best_distance = np.inf
        scanned = 0

        for identity in candidates:
            if identity.embedding is None:
                continue
            scanned += 1
            similarity = cosine_similarity(probe, identity.embedding)
            distance = euclidean_distance(probe, identity.embedding)

            if mode == MatchMode.SIMILARITY:
                better = similarity > best_similarity
            else:
                better = distance < best_distance

            if better:
                best = identity
                best_similarity = similarity
                best_distance = distance

        if best is None:
            logger.info("No enrolled identities to match against")
            return MatchResult(
                identity=None,
                similarity=None,
                distance=None,
                accepted=False,
                mode=mode,
                candidates_scanned=0,
            )

        accepted = self._passes(mode, best_similarity, best_distance)

        logger.info(
            f"Best match {best.identity_id} ({mode.value} mode): similarity={best_similarity:.4f}, "
            f"distance={best_distance:.4f}, accepted={accepted}, scanned={scanned}"
        )

        return MatchResult(
            identity=best if accepted else None,
            similarity=float(best_similarity),
            distance=float(best_distance),
            accepted=accepted,
            mode=mode,
            candidates_scanned=scanned,
        )

    def _passes(self, mode: MatchMode, similarity: float, distance: float) -> bool:
        if mode == MatchMode.SIMILARITY:
            return similarity > self.thresholds.similarity
        return distance < self.thresholds.distance
