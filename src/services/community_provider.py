"""Community (Telegram club) access provider backed by Supabase Edge Functions."""

import logging
from uuid import UUID

from src.api.middleware.error_handler import ExternalSyncError
from src.core.edge_functions import invoke_edge_function
from src.schemas.sync import COMMUNITY_PROVIDER

logger = logging.getLogger(__name__)

GRANT_FUNCTION = "telegram-grant-access"
REVOKE_FUNCTION = "telegram-revoke-access"


class CommunityProvider:
    """Grants and revokes membership in the chat community."""

    name = COMMUNITY_PROVIDER

    async def grant_access(
        self,
        user_id: UUID,
        club_id: str,
        duration_days: int,
        source: str,
    ) -> None:
        """Grant club membership for ``duration_days``.

        Raises:
            ExternalSyncError: If the provider reports a failure.
        """
        result = await invoke_edge_function(
            GRANT_FUNCTION,
            {
                "user_id": str(user_id),
                "club_id": club_id,
                "duration_days": duration_days,
                "source": source,
            },
        )
        if result.get("success") is False:
            raise ExternalSyncError(result.get("error") or "Community grant rejected", provider=self.name)
        logger.info("Community access granted: user=%s club=%s days=%d", user_id, club_id, duration_days)

    async def revoke_access(self, user_id: UUID, club_id: str, reason: str) -> None:
        """Remove the user from the club.

        Raises:
            ExternalSyncError: If the provider reports a failure.
        """
        result = await invoke_edge_function(
            REVOKE_FUNCTION,
            {"user_id": str(user_id), "club_id": club_id, "reason": reason},
        )
        if result.get("success") is False:
            raise ExternalSyncError(result.get("error") or "Community revoke rejected", provider=self.name)
        logger.info("Community access revoked: user=%s club=%s", user_id, club_id)
