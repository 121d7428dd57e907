"""Supabase client for identity persistence."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from supabase import create_client, Client
from postgrest.exceptions import APIError

from ..config import settings
from ..models.internal_models import Identity
from ..services.vector_math import embedding_from_json, embedding_to_json
from .identity_store import IdentityExistsError, IdentityNotFoundError, IdentityStore, retry_operation

logger = logging.getLogger(__name__)


class SupabaseClient:
    """Client for Supabase database operations."""

    def __init__(self, url: Optional[str] = None, key: Optional[str] = None):
        """Initialize Supabase client with configuration."""
        self._client: Optional[Client] = None
        self._url = url or settings.supabase_url
        self._key = key or settings.supabase_anon_key

    @property
    def client(self) -> Client:
        """Get or create Supabase client instance."""
        if self._client is None:
            self._client = create_client(self._url, self._key)
        return self._client

    async def health_check(self) -> bool:
        """Check if database connection is healthy."""
        try:
            self.client.table("identities").select("count", count="exact").limit(0).execute()
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False


class SupabaseIdentityStore(IdentityStore):
    """Identity store backed by the Supabase ``identities`` table."""

    table = "identities"

    def __init__(
        self,
        supabase_client: Optional[SupabaseClient] = None,
        embedding_dim: Optional[int] = None,
        max_retries: int = 3,
    ):
        """
        Initialize store.

        Args:
            supabase_client: Client wrapper. If None, creates one from settings.
            embedding_dim: Expected stored embedding length
            max_retries: Attempts for read operations
        """
        self.client = supabase_client or SupabaseClient()
        self.embedding_dim = embedding_dim or settings.embedding_dim
        self.max_retries = max_retries

    def _to_row(self, identity: Identity) -> Dict[str, Any]:
        return {
            "id": identity.identity_id,
            "name": identity.name,
            "embedding": embedding_to_json(identity.embedding) if identity.embedding is not None else None,
            "photo_ref": identity.photo_ref,
            "present": identity.present,
            "enrolled_at": identity.enrolled_at.isoformat() if identity.enrolled_at else None,
        }

    def _from_row(self, row: Dict[str, Any]) -> Identity:
        embedding = None
        if row.get("embedding"):
            embedding = embedding_from_json(row["embedding"], expected_length=self.embedding_dim)

        enrolled_at = None
        if row.get("enrolled_at"):
            enrolled_at = datetime.fromisoformat(row["enrolled_at"].replace('Z', '+00:00'))

        return Identity(
            identity_id=str(row["id"]),
            name=row["name"],
            embedding=embedding,
            photo_ref=row.get("photo_ref"),
            present=bool(row.get("present", False)),
            enrolled_at=enrolled_at,
        )

    async def get_all(self) -> List[Identity]:
        """Retrieve all identities ordered by id."""
        async def fetch():
            return self.client.client.table(self.table).select("*").order("id").execute()

        try:
            result = await retry_operation(fetch, max_retries=self.max_retries)
            return [self._from_row(row) for row in result.data]
        except APIError as e:
            logger.error(f"Database error listing identities: {e}")
            raise

    async def get(self, identity_id: str) -> Optional[Identity]:
        """Retrieve identity by id."""
        try:
            result = self.client.client.table(self.table).select("*").eq("id", identity_id).execute()

            if not result.data:
                return None

            return self._from_row(result.data[0])

        except APIError as e:
            logger.error(f"Database error retrieving identity {identity_id}: {e}")
            raise

    async def search(self, query: str) -> List[Identity]:
        """Retrieve identities whose id or name contains the query."""
        pattern = f"%{query.strip()}%"
        try:
            result = (
                self.client.client.table(self.table)
                .select("*")
                .or_(f"id.ilike.{pattern},name.ilike.{pattern}")
                .order("id")
                .execute()
            )
            return [self._from_row(row) for row in result.data]

        except APIError as e:
            logger.error(f"Database error searching identities for '{query}': {e}")
            raise

    async def create(self, identity: Identity) -> Identity:
        """Insert a new identity row."""
        if await self.get(identity.identity_id) is not None:
            raise IdentityExistsError(f"Identity {identity.identity_id} already exists")

        try:
            result = self.client.client.table(self.table).insert(self._to_row(identity)).execute()

            if not result.data:
                raise ValueError("Failed to create identity")

            logger.info(f"Successfully created identity {identity.identity_id}")
            return identity.snapshot()

        except APIError as e:
            logger.error(f"Database error creating identity {identity.identity_id}: {e}")
            raise

    async def persist(self, identity: Identity) -> Identity:
        """Create or update an identity row (upsert operation)."""
        try:
            result = self.client.client.table(self.table).upsert(
                self._to_row(identity),
                on_conflict="id"
            ).execute()

            if not result.data:
                raise ValueError("Failed to persist identity")

            logger.info(f"Successfully upserted identity {identity.identity_id}")
            return identity.snapshot()

        except APIError as e:
            logger.error(f"Database error persisting identity {identity.identity_id}: {e}")
            raise

    async def set_presence(self, identity_id: str, present: bool) -> None:
        """Update the presence flag of one identity."""
        try:
            result = (
                self.client.client.table(self.table)
                .update({"present": present})
                .eq("id", identity_id)
                .execute()
            )

            if not result.data:
                raise IdentityNotFoundError(f"Identity {identity_id} not found")

        except APIError as e:
            logger.error(f"Database error updating presence for {identity_id}: {e}")
            raise

    async def health_check(self) -> bool:
        return await self.client.health_check()
