"""
Face authentication service for enrollment and recognition workflows.

This module provides the business logic for:
- Roster provisioning, listing and search of identities
- Multi-shot enrollment sessions with duplicate detection
- Recognition of live probe embeddings and presence marking
"""

import logging
import uuid
from typing import Callable, Dict, List, Optional, Sequence

from face_auth.clients.identity_store import (
    IdentityNotFoundError,
    IdentityStore,
    InMemoryIdentityStore,
)
from face_auth.clients.supabase_client import SupabaseIdentityStore
from face_auth.config import Settings, settings as default_settings
from face_auth.models.internal_models import (
    CaptureResult,
    EnrollmentOutcome,
    Identity,
    MatchMode,
    MatchResult,
    RejectionReason,
    SessionState,
    SessionStatus,
)
from face_auth.services.embedding_service import EmbeddingService
from face_auth.services.enrollment_gate import DuplicatePolicy, EnrollmentGate
from face_auth.services.enrollment_session import EnrollmentSession, now_ms as monotonic_ms
from face_auth.services.matcher import IdentityMatcher, MatcherThresholds

logger = logging.getLogger(__name__)


class FaceAuthError(Exception):
    """Base exception for face authentication service errors."""
    pass


class EnrollmentError(FaceAuthError):
    """Raised when an enrollment cannot be carried out."""
    pass


class SessionNotFoundError(FaceAuthError):
    """Raised when an enrollment session id is unknown."""
    pass


class PolicyError(FaceAuthError):
    """Raised when a request does not fit the configured enrollment policy."""
    pass


class FaceAuthService:
    """
    Core service handling enrollment and recognition workflows.

    Owns one enrollment gate shared by all sessions, so duplicate checks and
    writes from concurrent enrollments are serialised.
    """

    def __init__(
        self,
        store: Optional[IdentityStore] = None,
        embedding_service: Optional[EmbeddingService] = None,
        config: Optional[Settings] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        """
        Initialize face authentication service.

        Args:
            store: Identity store. If None, uses an in-memory store.
            embedding_service: Embedding validation service
            config: Settings instance. If None, uses the global settings.
            clock: Millisecond clock for session expiry. Defaults to a monotonic clock.
        """
        self.config = config or default_settings
        self.store = store or InMemoryIdentityStore()
        self.embedding_service = embedding_service or EmbeddingService(
            embedding_dim=self.config.embedding_dim
        )
        self.matcher = IdentityMatcher(
            thresholds=MatcherThresholds.from_settings(self.config),
            mode=MatchMode(self.config.recognition_mode),
        )
        self.gate = EnrollmentGate(
            store=self.store,
            policy=DuplicatePolicy.from_settings(self.config),
        )
        self._sessions: Dict[str, EnrollmentSession] = {}
        self._last_activity: Dict[str, int] = {}
        self._clock = clock or monotonic_ms

        logger.info(
            f"Face auth service initialized: policy={self.config.enrollment_policy}, "
            f"recognition_mode={self.matcher.mode.value}, samples={self.config.enrollment_samples}"
        )

    # Identities

    async def seed_roster(self, entries: Optional[Sequence[dict]] = None) -> int:
        """
        Insert roster entries when the store holds no identities yet.

        Args:
            entries: Dicts with ``id``, ``name`` and optional ``present``.
                     Defaults to the configured roster seed.

        Returns:
            Number of identities created
        """
        entries = self.config.roster_seed if entries is None else entries
        if not entries or await self.store.count() > 0:
            return 0

        created = 0
        for entry in entries:
            await self.store.create(Identity(
                identity_id=str(entry["id"]),
                name=str(entry["name"]),
                present=bool(entry.get("present", False)),
            ))
            created += 1

        logger.info(f"Seeded roster with {created} identities")
        return created

    async def list_identities(self) -> List[Identity]:
        return await self.store.get_all()

    async def search_identities(self, query: str) -> List[Identity]:
        return await self.store.search(query)

    async def get_identity(self, identity_id: str) -> Identity:
        identity = await self.store.get(identity_id)
        if identity is None:
            raise IdentityNotFoundError(f"Identity {identity_id} not found")
        return identity

    async def create_identity(self, identity_id: str, name: str) -> Identity:
        """Provision a roster identity awaiting enrollment."""
        return await self.store.create(Identity(identity_id=identity_id, name=name))

    # Enrollment

    async def _resolve_target(
        self,
        identity_id: Optional[str],
        query: Optional[str],
        name: Optional[str],
    ) -> Identity:
        if self.config.enrollment_policy == "register":
            if not name:
                raise PolicyError("A name is required to register a new identity")
            return Identity(identity_id=uuid.uuid4().hex, name=name)

        if identity_id:
            return await self.get_identity(identity_id)

        if query:
            results = await self.store.search(query)
            if not results:
                raise IdentityNotFoundError(f"No identity matches '{query}'")
            return results[0]

        raise PolicyError("An identity id or search query is required for roster enrollment")

    async def start_enrollment(
        self,
        identity_id: Optional[str] = None,
        query: Optional[str] = None,
        name: Optional[str] = None,
        overwrite: bool = False,
    ) -> tuple[str, Optional[EnrollmentOutcome]]:
        """
        Open an enrollment session for a target identity.

        Under the roster policy the target must already exist; under the
        register policy a new identity is built from ``name`` and only
        written when the enrollment commits.

        Returns:
            Tuple of (session_id, early_outcome). ``early_outcome`` is an
            ALREADY_ENROLLED rejection when the target has an embedding and
            ``overwrite`` is False; no session is opened in that case.

        Raises:
            IdentityNotFoundError: If the roster target does not exist
            PolicyError: If the request does not fit the enrollment policy
        """
        target = await self._resolve_target(identity_id, query, name)

        if target.is_enrolled and not overwrite:
            logger.info(f"Identity {target.identity_id} already enrolled, not starting capture")
            return "", EnrollmentOutcome(
                accepted=False,
                identity=target,
                rejection=RejectionReason.ALREADY_ENROLLED,
                duplicate_of=target,
            )

        session = EnrollmentSession(
            gate=self.gate,
            capacity=self.config.enrollment_samples,
            min_interval_ms=self.config.capture_interval_ms,
        )
        session.start(target, allow_overwrite=overwrite)

        self._evict_expired()
        session_id = uuid.uuid4().hex
        self._sessions[session_id] = session
        self._last_activity[session_id] = self._clock()
        logger.info(f"Opened enrollment session {session_id} for {target.identity_id}")
        return session_id, None

    def _evict_expired(self) -> int:
        """Cancel and drop sessions idle for longer than the configured TTL."""
        now = self._clock()
        ttl = self.config.enrollment_session_ttl_ms
        expired = [
            session_id for session_id, seen in self._last_activity.items()
            if now - seen > ttl and self._sessions[session_id].state != SessionState.COMMITTING
        ]
        for session_id in expired:
            self._sessions[session_id].cancel()
            self._drop(session_id)
            logger.info(f"Enrollment session {session_id} expired after {ttl}ms without activity")
        return len(expired)

    def _drop(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._last_activity.pop(session_id, None)

    def _session(self, session_id: str) -> EnrollmentSession:
        self._evict_expired()
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Enrollment session {session_id} not found")
        self._last_activity[session_id] = self._clock()
        return session

    async def offer_sample(
        self,
        session_id: str,
        values,
        now_ms: Optional[int] = None,
        photo_ref: Optional[str] = None,
    ) -> CaptureResult:
        """
        Offer one captured embedding to an enrollment session.

        Finished sessions (committed or rejected) are removed from the
        registry once their result is returned.

        Raises:
            SessionNotFoundError: If the session id is unknown
            LengthMismatchError: If the embedding has the wrong length
            EnrollmentError: If persisting the enrollment fails
        """
        session = self._session(session_id)
        vector = self.embedding_service.coerce(values)

        try:
            result = await session.offer(vector, now=now_ms, photo_ref=photo_ref)
        except Exception as e:
            self._drop(session_id)
            logger.error(f"Enrollment session {session_id} failed: {e}")
            raise EnrollmentError(f"Failed to store enrollment: {e}")

        if result.outcome is not None or result.reason == "cancelled":
            self._drop(session_id)

        return result

    async def offer_image(
        self,
        session_id: str,
        image,
        now_ms: Optional[int] = None,
        photo_ref: Optional[str] = None,
    ) -> CaptureResult:
        """Extract an embedding from a face image and offer it to a session."""
        session = self._session(session_id)

        try:
            result = await session.offer_image(image, self.embedding_service, now=now_ms, photo_ref=photo_ref)
        except Exception as e:
            self._drop(session_id)
            logger.error(f"Enrollment session {session_id} failed: {e}")
            raise EnrollmentError(f"Failed to store enrollment: {e}")

        if result.outcome is not None or result.reason == "cancelled":
            self._drop(session_id)

        return result

    def cancel_enrollment(self, session_id: str) -> None:
        session = self._session(session_id)
        session.cancel()
        self._drop(session_id)

    def enrollment_status(self, session_id: str) -> SessionStatus:
        return self._session(session_id).status(session_id)

    def active_sessions(self) -> int:
        self._evict_expired()
        return sum(1 for s in self._sessions.values() if s.state == SessionState.CAPTURING)

    # Recognition

    async def recognize(self, values, mode: Optional[MatchMode] = None) -> MatchResult:
        """
        Match a live probe embedding against enrolled identities.

        Args:
            values: Probe embedding (normalised here before matching)
            mode: Ranking mode, defaults to the configured recognition mode

        Returns:
            MatchResult; unknown faces and an empty roster are not errors
        """
        probe = self.embedding_service.prepare_probe(values)
        identities = await self.store.get_all()
        result = self.matcher.find_best(probe, identities, mode)

        if result.accepted and self.config.mark_presence_on_recognition:
            try:
                await self.store.set_presence(result.identity.identity_id, True)
                result.identity.present = True
            except Exception as e:
                logger.warning(f"Failed to mark {result.identity.identity_id} present: {e}")

        return result


# Global instance for reuse across requests
_face_service: Optional[FaceAuthService] = None


def create_store(config: Settings) -> IdentityStore:
    """Build the identity store selected by configuration."""
    if config.storage_backend == "supabase":
        return SupabaseIdentityStore(embedding_dim=config.embedding_dim)
    return InMemoryIdentityStore()


def get_face_service() -> FaceAuthService:
    """
    Get the global face authentication service instance.

    Returns:
        FaceAuthService: The global face authentication service instance
    """
    global _face_service
    if _face_service is None:
        _face_service = FaceAuthService(store=create_store(default_settings))
    return _face_service
