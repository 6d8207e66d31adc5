"""Remote collaborators: Supabase table access and the current user."""

from wellsync.remote.session import StaticUserProvider, SupabaseSessionProvider
from wellsync.remote.supabase_tables import SupabaseTableService, classify_remote_error

__all__ = [
    "SupabaseTableService",
    "SupabaseSessionProvider",
    "StaticUserProvider",
    "classify_remote_error",
]
