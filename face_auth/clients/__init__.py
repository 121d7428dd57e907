"""Client modules for identity persistence."""

from face_auth.clients.identity_store import (
    IdentityStore,
    InMemoryIdentityStore,
    IdentityExistsError,
    IdentityNotFoundError,
    retry_operation
)

from face_auth.clients.supabase_client import (
    SupabaseClient,
    SupabaseIdentityStore
)

__all__ = [
    "IdentityStore",
    "InMemoryIdentityStore",
    "IdentityExistsError",
    "IdentityNotFoundError",
    "retry_operation",
    "SupabaseClient",
    "SupabaseIdentityStore"
]
