"""Current-user providers."""

import asyncio
import logging
from typing import Optional

from supabase import Client

from wellsync.protocols import AuthorizationError

logger = logging.getLogger(__name__)


class SupabaseSessionProvider:
    """Reads the signed-in user from the Supabase client's auth session."""

    def __init__(self, client: Client):
        self._client = client

    async def current_user_id(self) -> str:
        try:
            session = await asyncio.to_thread(self._client.auth.get_session)
        except Exception as e:
            raise AuthorizationError(f"Could not read auth session: {e}") from e
        if session is None or session.user is None:
            raise AuthorizationError("No active session; sign in to sync")
        return str(session.user.id)


class StaticUserProvider:
    """Fixed user id, for hosts that manage auth themselves."""

    def __init__(self, user_id: Optional[str] = None):
        self.user_id = user_id

    async def current_user_id(self) -> str:
        if not self.user_id:
            raise AuthorizationError("No current user")
        return self.user_id
