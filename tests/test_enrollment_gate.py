"""
Tests for duplicate detection in the enrollment gate.
"""

import asyncio

import numpy as np
import pytest
from unittest.mock import AsyncMock

from face_auth.clients.identity_store import InMemoryIdentityStore
from face_auth.models.internal_models import Identity, RejectionReason
from face_auth.services.enrollment_gate import DuplicatePolicy, EnrollmentGate
from face_auth.services.matcher import ScoredCandidate
from face_auth.services.vector_math import l2_normalize

DIM = 128


def unit(index: int) -> np.ndarray:
    v = np.zeros(DIM)
    v[index] = 1.0
    return v


def at_cosine(cos: float, base: int = 0, other: int = 1) -> np.ndarray:
    """Unit vector whose cosine similarity to unit(base) is ``cos``."""
    return cos * unit(base) + np.sqrt(1.0 - cos ** 2) * unit(other)


class TestDuplicatePolicy:
    """Test cases for the tiered same-face rule."""

    @pytest.fixture
    def gate(self):
        return EnrollmentGate(store=InMemoryIdentityStore())

    def scored(self, embedding, candidate) -> ScoredCandidate:
        identity = Identity(identity_id="E", name="Enrolled", embedding=embedding)
        return ScoredCandidate(
            identity=identity,
            similarity=float(np.dot(candidate, embedding) / (np.linalg.norm(candidate) * np.linalg.norm(embedding))),
            distance=float(np.linalg.norm(candidate - embedding)),
        )

    def test_defaults(self):
        """Test default thresholds are stricter than recognition."""
        policy = DuplicatePolicy()

        assert policy.similarity_high == 0.82
        assert policy.similarity_mid == 0.75
        assert policy.confirm_similarity == 0.78
        assert policy.distance_threshold == 1.05
        assert policy.require_distance is True

    def test_high_tier_is_duplicate(self, gate):
        """Test similarity above the high tier is the same face."""
        candidate = at_cosine(0.90)
        assert gate.is_same_face(self.scored(unit(0), candidate), candidate) is True

    def test_below_mid_tier_is_not_duplicate(self, gate):
        """Test similarity below the mid tier is a different face."""
        candidate = at_cosine(0.70)
        assert gate.is_same_face(self.scored(unit(0), candidate), candidate) is False

    def test_mid_tier_confirmed_by_a_sample(self, gate):
        """Test a mid-tier average is a duplicate when one sample clears the re-check."""
        candidate = at_cosine(0.78)
        samples = [at_cosine(0.70, other=2), at_cosine(0.85, other=3)]

        assert gate.is_same_face(self.scored(unit(0), candidate), candidate, samples) is True

    def test_mid_tier_not_confirmed(self, gate):
        """Test a mid-tier average whose samples all fail the re-check is allowed."""
        candidate = at_cosine(0.78)
        samples = [at_cosine(0.76, other=2), at_cosine(0.77, other=3)]

        assert gate.is_same_face(self.scored(unit(0), candidate), candidate, samples) is False

    def test_mid_tier_without_samples_uses_candidate(self, gate):
        """Test the re-check falls back to the candidate itself."""
        candidate = at_cosine(0.80)
        assert gate.is_same_face(self.scored(unit(0), candidate), candidate) is True

    def test_distance_requirement(self):
        """Test a high-similarity match far away in distance is not a duplicate."""
        stored = 3.0 * unit(0)  # same direction, much larger norm
        candidate = at_cosine(0.90)
        strict = EnrollmentGate(store=InMemoryIdentityStore())
        relaxed = EnrollmentGate(
            store=InMemoryIdentityStore(),
            policy=DuplicatePolicy(require_distance=False)
        )
        scored = self.scored(stored, candidate)

        assert scored.distance > 1.05
        assert strict.is_same_face(scored, candidate) is False
        assert relaxed.is_same_face(scored, candidate) is True

    def test_policy_from_settings(self):
        """Test the policy is read from configuration."""
        from face_auth.config import Settings

        policy = DuplicatePolicy.from_settings(Settings(
            duplicate_similarity_high=0.9,
            duplicate_require_distance=False
        ))

        assert policy.similarity_high == 0.9
        assert policy.require_distance is False


class TestEnrollmentGate:
    """Test cases for EnrollmentGate decisions and commits."""

    @pytest.fixture
    def store(self):
        return InMemoryIdentityStore([
            Identity(identity_id="E", name="Enrolled", embedding=unit(0)),
            Identity(identity_id="T", name="Target"),
            Identity(identity_id="U", name="Other"),
        ])

    @pytest.fixture
    def gate(self, store):
        return EnrollmentGate(store=store)

    @pytest.mark.asyncio
    async def test_duplicate_of_other_identity(self, gate, store):
        """Test a face already enrolled under another identity is refused."""
        target = await store.get("T")

        outcome = await gate.commit(at_cosine(0.90), target)

        assert outcome.accepted is False
        assert outcome.rejection == RejectionReason.DUPLICATE_OF_OTHER
        assert outcome.duplicate_of.identity_id == "E"
        assert outcome.match.similarity == pytest.approx(0.90)
        assert (await store.get("T")).embedding is None

    @pytest.mark.asyncio
    async def test_already_enrolled(self, gate, store):
        """Test re-enrolling the same identity without overwrite is refused."""
        target = await store.get("E")
        before = target.embedding.copy()

        outcome = await gate.commit(at_cosine(0.90), target)

        assert outcome.accepted is False
        assert outcome.rejection == RejectionReason.ALREADY_ENROLLED
        np.testing.assert_array_equal((await store.get("E")).embedding, before)

    @pytest.mark.asyncio
    async def test_overwrite_allowed(self, gate, store):
        """Test an explicit overwrite replaces the target's embedding."""
        target = await store.get("E")
        candidate = at_cosine(0.90)

        outcome = await gate.commit(candidate, target, allow_overwrite=True)

        assert outcome.accepted is True
        np.testing.assert_allclose((await store.get("E")).embedding, candidate)

    @pytest.mark.asyncio
    async def test_overwrite_blocked_by_other_identity(self, gate, store):
        """Test overwriting is refused when another identity also has this face."""
        other = l2_normalize(np.concatenate([[0.95, 0.31], np.zeros(DIM - 2)]))
        await store.persist(Identity(identity_id="U", name="Other", embedding=other))
        target = await store.get("E")
        before = target.embedding.copy()
        candidate = l2_normalize(np.concatenate([[0.99, 0.1], np.zeros(DIM - 2)]))

        # Self-match ranks first, the other identity still clears the high tier
        outcome = await gate.commit(candidate, target, allow_overwrite=True)

        assert outcome.accepted is False
        assert outcome.rejection == RejectionReason.DUPLICATE_OF_OTHER
        assert outcome.duplicate_of.identity_id == "U"
        assert outcome.match.similarity > 0.82
        np.testing.assert_array_equal((await store.get("E")).embedding, before)

    @pytest.mark.asyncio
    async def test_self_match_below_other_identity_without_overwrite(self, gate, store):
        """Test a face closer to another identity than to the target is a duplicate of the other."""
        await store.persist(Identity(identity_id="T", name="Target", embedding=at_cosine(0.85)))
        target = await store.get("T")

        outcome = await gate.commit(at_cosine(0.99), target)

        assert outcome.rejection == RejectionReason.DUPLICATE_OF_OTHER
        assert outcome.duplicate_of.identity_id == "E"

    @pytest.mark.asyncio
    async def test_new_face_persisted(self, gate, store):
        """Test a distinct face is written to the target with its metadata."""
        target = await store.get("T")
        candidate = unit(5)

        outcome = await gate.commit(candidate, target, photo_ref="frames/t.jpg")

        assert outcome.accepted is True
        assert outcome.rejection is None
        stored = await store.get("T")
        np.testing.assert_array_equal(stored.embedding, candidate)
        assert stored.photo_ref == "frames/t.jpg"
        assert stored.enrolled_at is not None
        assert stored.enrolled_at.tzinfo is not None
        assert stored.name == "Target"

    @pytest.mark.asyncio
    async def test_persist_keeps_stored_fields(self, gate, store):
        """Test fields changed in the store since the target was read are kept."""
        target = await store.get("T")
        await store.set_presence("T", True)

        await gate.commit(unit(5), target)

        assert (await store.get("T")).present is True

    @pytest.mark.asyncio
    async def test_empty_store(self):
        """Test the first enrollment into an empty store is accepted."""
        store = InMemoryIdentityStore()
        gate = EnrollmentGate(store=store)

        outcome = await gate.commit(unit(0), Identity(identity_id="new", name="New"))

        assert outcome.accepted is True
        assert outcome.match.candidates_scanned == 0
        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_should_commit_veto(self, gate, store):
        """Test a veto right before persist writes nothing."""
        target = await store.get("T")

        outcome = await gate.commit(unit(5), target, should_commit=lambda: False)

        assert outcome is None
        assert (await store.get("T")).embedding is None

    @pytest.mark.asyncio
    async def test_check_does_not_write(self, gate, store):
        """Test check reports a decision without persisting."""
        target = await store.get("T")

        decision = await gate.check(unit(5), target)

        assert decision.allowed is True
        assert (await store.get("T")).embedding is None

    @pytest.mark.asyncio
    async def test_closest_other_identity_reported(self, gate, store):
        """Test the highest-similarity duplicate is the one reported."""
        await store.persist(Identity(identity_id="U", name="Other", embedding=at_cosine(0.95)))
        target = await store.get("T")

        # Duplicate of both E (0.95) and U (1.0); U is reported
        outcome = await gate.commit(at_cosine(0.95), target)

        assert outcome.rejection == RejectionReason.DUPLICATE_OF_OTHER
        assert outcome.duplicate_of.identity_id == "U"

    @pytest.mark.asyncio
    async def test_concurrent_commits_of_same_face(self):
        """Test two targets racing with the same face produce one enrollment."""
        store = InMemoryIdentityStore([
            Identity(identity_id="A", name="Alice"),
            Identity(identity_id="B", name="Bob"),
        ])
        gate = EnrollmentGate(store=store)
        face = unit(7)

        outcomes = await asyncio.gather(
            gate.commit(face, await store.get("A")),
            gate.commit(face, await store.get("B")),
        )

        accepted = [o for o in outcomes if o.accepted]
        rejected = [o for o in outcomes if not o.accepted]
        assert len(accepted) == 1
        assert len(rejected) == 1
        assert rejected[0].rejection == RejectionReason.DUPLICATE_OF_OTHER
        assert rejected[0].duplicate_of.identity_id == accepted[0].identity.identity_id
        assert sum(1 for i in await store.get_all() if i.is_enrolled) == 1

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self):
        """Test persist failures reach the caller."""
        store = AsyncMock()
        store.get_all.return_value = []
        store.persist.side_effect = ConnectionError("database unavailable")
        gate = EnrollmentGate(store=store)

        with pytest.raises(ConnectionError):
            await gate.commit(unit(0), Identity(identity_id="T", name="Target"))
