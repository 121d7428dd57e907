"""Identity store contract and in-memory implementation."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from ..models.internal_models import Identity

logger = logging.getLogger(__name__)


class IdentityExistsError(Exception):
    """Raised when creating an identity whose id is already taken."""
    pass


class IdentityNotFoundError(Exception):
    """Raised when an identity id is not present in the store."""
    pass


class IdentityStore(ABC):
    """Persistence contract for enrollable identities.

    Every read returns snapshots; callers never hold a reference to the
    store's canonical rows.
    """

    @abstractmethod
    async def get_all(self) -> List[Identity]:
        """All identities in a deterministic order."""

    @abstractmethod
    async def get(self, identity_id: str) -> Optional[Identity]:
        """Identity by id, or None."""

    @abstractmethod
    async def search(self, query: str) -> List[Identity]:
        """Identities whose id or name contains the query (case-insensitive)."""

    @abstractmethod
    async def create(self, identity: Identity) -> Identity:
        """Insert a new identity; raises IdentityExistsError on a taken id."""

    @abstractmethod
    async def persist(self, identity: Identity) -> Identity:
        """Atomically upsert one identity row."""

    @abstractmethod
    async def set_presence(self, identity_id: str, present: bool) -> None:
        """Update the presence flag of one identity."""

    async def count(self) -> int:
        return len(await self.get_all())

    async def health_check(self) -> bool:
        return True


class InMemoryIdentityStore(IdentityStore):
    """Process-local identity store, ordered by insertion."""

    def __init__(self, identities: Optional[List[Identity]] = None):
        self._rows: Dict[str, Identity] = {}
        self._lock = asyncio.Lock()
        for identity in identities or []:
            self._rows[identity.identity_id] = identity.snapshot()

    async def get_all(self) -> List[Identity]:
        async with self._lock:
            return [row.snapshot() for row in self._rows.values()]

    async def get(self, identity_id: str) -> Optional[Identity]:
        async with self._lock:
            row = self._rows.get(identity_id)
            return row.snapshot() if row else None

    async def search(self, query: str) -> List[Identity]:
        needle = query.strip().lower()
        async with self._lock:
            return [
                row.snapshot() for row in self._rows.values()
                if needle in row.identity_id.lower() or needle in row.name.lower()
            ]

    async def create(self, identity: Identity) -> Identity:
        async with self._lock:
            if identity.identity_id in self._rows:
                raise IdentityExistsError(f"Identity {identity.identity_id} already exists")
            self._rows[identity.identity_id] = identity.snapshot()
        logger.info(f"Created identity {identity.identity_id} ({identity.name})")
        return identity.snapshot()

    async def persist(self, identity: Identity) -> Identity:
        async with self._lock:
            self._rows[identity.identity_id] = identity.snapshot()
        logger.info(f"Persisted identity {identity.identity_id} (enrolled={identity.is_enrolled})")
        return identity.snapshot()

    async def set_presence(self, identity_id: str, present: bool) -> None:
        async with self._lock:
            row = self._rows.get(identity_id)
            if row is None:
                raise IdentityNotFoundError(f"Identity {identity_id} not found")
            row.present = present
        logger.debug(f"Set presence of {identity_id} to {present}")

    async def count(self) -> int:
        async with self._lock:
            return len(self._rows)


async def retry_operation(operation, max_retries: int = 3, base_delay: float = 1.0):
    """Retry store operations with exponential backoff."""
    last_exception = None

    for attempt in range(max_retries):
        try:
            return await operation()
        except Exception as e:
            last_exception = e
            if attempt < max_retries - 1:
                delay = base_delay * (2 ** attempt)
                logger.warning(f"Store operation failed (attempt {attempt + 1}/{max_retries}), retrying in {delay}s: {e}")
                await asyncio.sleep(delay)
            else:
                logger.error(f"Store operation failed after {max_retries} attempts: {e}")

    raise last_exception
