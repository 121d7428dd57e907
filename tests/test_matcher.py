"""
Tests for the identity matcher.
"""

import numpy as np
import pytest

from face_auth.models.internal_models import Identity, MatchMode
from face_auth.services.matcher import IdentityMatcher, MatcherThresholds
from face_auth.services.vector_math import LengthMismatchError, l2_normalize


def unit(dim: int, index: int) -> np.ndarray:
    v = np.zeros(dim)
    v[index] = 1.0
    return v


class TestIdentityMatcher:
    """Test cases for IdentityMatcher."""

    @pytest.fixture
    def matcher(self):
        return IdentityMatcher(thresholds=MatcherThresholds(similarity=0.55, distance=1.0))

    @pytest.fixture
    def roster(self):
        """Five enrolled identities with orthogonal embeddings plus one unenrolled."""
        identities = [
            Identity(identity_id=str(i), name=f"Person {i}", embedding=unit(128, i))
            for i in range(1, 6)
        ]
        identities.insert(2, Identity(identity_id="pending", name="Not Enrolled"))
        return identities

    def test_exact_match_accepted(self, matcher, roster):
        """Test a probe identical to a stored embedding is recognised."""
        result = matcher.find_best(unit(128, 3), roster)

        assert result.accepted is True
        assert result.identity.identity_id == "3"
        assert result.distance == 0.0
        assert result.similarity == pytest.approx(1.0)
        assert result.candidates_scanned == 5

    def test_exact_match_similarity_mode(self, matcher, roster):
        """Test similarity mode agrees on an exact match."""
        result = matcher.find_best(unit(128, 4), roster, MatchMode.SIMILARITY)

        assert result.accepted is True
        assert result.identity.identity_id == "4"
        assert result.mode == MatchMode.SIMILARITY

    def test_empty_candidates(self, matcher):
        """Test an empty roster reports unknown without raising."""
        result = matcher.find_best(unit(8, 0), [])

        assert result.identity is None
        assert result.accepted is False
        assert result.candidates_scanned == 0
        assert result.no_enrolled_identities

    def test_only_unenrolled_candidates(self, matcher):
        """Test candidates without embeddings are skipped."""
        result = matcher.find_best(unit(8, 0), [Identity(identity_id="1", name="A")])

        assert result.accepted is False
        assert result.candidates_scanned == 0

    def test_below_threshold_is_unknown(self, matcher):
        """Test a distant probe is reported as unknown with its scores kept."""
        candidates = [Identity(identity_id="1", name="A", embedding=[1.0, 0.0])]
        result = matcher.find_best([0.0, 1.0], candidates)

        assert result.accepted is False
        assert result.identity is None
        assert result.distance == pytest.approx(np.sqrt(2))
        assert result.candidates_scanned == 1
        assert not result.no_enrolled_identities

    def test_similarity_threshold_is_strict(self):
        """Test similarity exactly at the threshold is not accepted."""
        matcher = IdentityMatcher(MatcherThresholds(similarity=1.0), mode=MatchMode.SIMILARITY)
        result = matcher.find_best([1.0, 0.0], [Identity(identity_id="1", name="A", embedding=[1.0, 0.0])])

        assert result.accepted is False

    def test_orthogonal_pair_both_modes_agree(self, matcher):
        """Test both modes rank the nearer of an orthogonal pair first."""
        candidates = [
            Identity(identity_id="1", name="A", embedding=[1.0, 0.0]),
            Identity(identity_id="2", name="B", embedding=[0.0, 1.0]),
        ]
        probe = [0.99, 0.14]

        by_distance = matcher.find_best(probe, candidates, MatchMode.DISTANCE)
        by_similarity = matcher.find_best(probe, candidates, MatchMode.SIMILARITY)

        assert by_distance.identity.identity_id == "1"
        assert by_similarity.identity.identity_id == "1"

    def test_first_seen_wins_ties(self, matcher):
        """Test identical scores resolve to the earlier candidate."""
        embedding = l2_normalize([1.0, 1.0])
        candidates = [
            Identity(identity_id="first", name="A", embedding=embedding),
            Identity(identity_id="second", name="B", embedding=embedding.copy()),
        ]

        for mode in (MatchMode.DISTANCE, MatchMode.SIMILARITY):
            result = matcher.find_best(embedding, candidates, mode)
            assert result.identity.identity_id == "first"

    def test_scans_all_candidates(self, matcher):
        """Test the global best is found even when it comes last."""
        candidates = [
            Identity(identity_id="far", name="A", embedding=l2_normalize([1.0, 1.0])),
            Identity(identity_id="near", name="B", embedding=[1.0, 0.0]),
        ]
        result = matcher.find_best([1.0, 0.0], candidates)

        assert result.identity.identity_id == "near"
        assert result.candidates_scanned == 2

    def test_length_mismatch_propagates(self, matcher):
        """Test a stored embedding of the wrong length is an error, not a score."""
        candidates = [Identity(identity_id="1", name="A", embedding=[1.0, 0.0, 0.0])]

        with pytest.raises(LengthMismatchError):
            matcher.find_best([1.0, 0.0], candidates)

    def test_rank_orders_best_first(self, matcher):
        """Test rank returns candidates ordered by the chosen metric."""
        candidates = [
            Identity(identity_id="b", name="B", embedding=[0.0, 1.0]),
            Identity(identity_id="a", name="A", embedding=[1.0, 0.0]),
            Identity(identity_id="skip", name="Skip"),
        ]
        ranked = matcher.rank([0.9, 0.1], candidates, MatchMode.SIMILARITY)

        assert [c.identity.identity_id for c in ranked] == ["a", "b"]
        assert ranked[0].similarity > ranked[1].similarity

    def test_thresholds_from_settings(self):
        """Test thresholds are read from configuration."""
        from face_auth.config import Settings

        thresholds = MatcherThresholds.from_settings(Settings(
            recognition_similarity_threshold=0.6,
            recognition_distance_threshold=0.9
        ))

        assert thresholds.similarity == 0.6
        assert thresholds.distance == 0.9
