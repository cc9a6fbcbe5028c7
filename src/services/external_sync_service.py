"""Best-effort synchronization with the community and enrollment providers.

Every call is independent. Failures, including timeouts, are recorded as
SyncResult entries and never raised to the workflow that asked for them.
"""

import asyncio
import logging
from collections.abc import Awaitable
from typing import Any
from uuid import UUID

from src.api.middleware.error_handler import ExternalSyncError
from src.core.config import get_settings
from src.schemas.sync import SyncResult
from src.services.community_provider import CommunityProvider
from src.services.enrollment_provider import EnrollmentProvider

logger = logging.getLogger(__name__)


class ExternalSyncCoordinator:
    """Wraps provider calls and turns their outcome into SyncResults."""

    def __init__(
        self,
        community: CommunityProvider | None = None,
        enrollment: EnrollmentProvider | None = None,
    ) -> None:
        self.community = community or CommunityProvider()
        self.enrollment = enrollment or EnrollmentProvider()
        self.settings = get_settings()

    async def _record(self, provider: str, operation: str, call: Awaitable[None]) -> SyncResult:
        try:
            await call
        except asyncio.TimeoutError:
            error = f"{operation} timed out after {self.settings.external_call_timeout_seconds:g}s"
            logger.warning("%s %s", provider, error)
            return SyncResult.failed(error)
        except ExternalSyncError as e:
            logger.warning("%s %s failed: %s", provider, operation, e.message)
            return SyncResult.failed(e.message)
        except Exception as e:
            logger.warning("%s %s failed: %s: %s", provider, operation, type(e).__name__, str(e))
            return SyncResult.failed(str(e) or type(e).__name__)
        return SyncResult.ok()

    async def grant_community_access(
        self, user_id: UUID, club_id: str, duration_days: int, source: str
    ) -> SyncResult:
        """Grant club membership for ``duration_days``."""
        return await self._record(
            self.community.name,
            "grant",
            self.community.grant_access(user_id, club_id, duration_days, source),
        )

    async def revoke_community_access(self, user_id: UUID, club_id: str, reason: str) -> SyncResult:
        """Remove club membership immediately."""
        return await self._record(
            self.community.name,
            "revoke",
            self.community.revoke_access(user_id, club_id, reason),
        )

    async def enroll(self, order: dict[str, Any], offer_identifier: str, tariff_code: str) -> SyncResult:
        """Create the course enrollment deal for an order."""
        return await self._record(
            self.enrollment.name,
            "enroll",
            self.enrollment.enroll(order, offer_identifier, tariff_code),
        )

    async def cancel_enrollment(self, order_id: UUID | str, reason: str) -> SyncResult:
        """Cancel the course enrollment deal of an order."""
        return await self._record(
            self.enrollment.name,
            "cancel",
            self.enrollment.cancel(order_id, reason),
        )
