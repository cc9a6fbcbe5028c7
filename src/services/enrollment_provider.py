"""Course enrollment provider (GetCourse) backed by Supabase Edge Functions."""

import logging
from typing import Any
from uuid import UUID

from src.api.middleware.error_handler import ExternalSyncError
from src.core.edge_functions import invoke_edge_function
from src.schemas.sync import ENROLLMENT_PROVIDER

logger = logging.getLogger(__name__)

ENROLL_FUNCTION = "getcourse-grant-access"
CANCEL_FUNCTION = "getcourse-cancel-deal"


def _provider_outcome(result: dict[str, Any]) -> dict[str, Any]:
    # Responses are either flat or nested under the provider name
    nested = result.get(ENROLLMENT_PROVIDER)
    return nested if isinstance(nested, dict) else result


class EnrollmentProvider:
    """Adds users to courses on purchase and cancels their deals."""

    name = ENROLLMENT_PROVIDER

    async def enroll(self, order: dict[str, Any], offer_identifier: str, tariff_code: str) -> None:
        """Create the enrollment deal for an order.

        The Edge Function prefers order data when ``order_id`` is given;
        email and offer are fallbacks.

        Raises:
            ExternalSyncError: If the provider reports a failure.
        """
        result = await invoke_edge_function(
            ENROLL_FUNCTION,
            {
                "order_id": str(order["id"]),
                "email": order.get("customer_email"),
                "offer_id": offer_identifier,
                "tariff_code": tariff_code,
            },
        )
        outcome = _provider_outcome(result)
        if not outcome.get("success"):
            raise ExternalSyncError(outcome.get("error") or "Unknown error", provider=self.name)
        logger.info("Enrollment created: order=%s offer=%s", order["id"], offer_identifier)

    async def cancel(self, order_id: UUID | str, reason: str) -> None:
        """Cancel the enrollment deal created for an order.

        Raises:
            ExternalSyncError: If the provider reports a failure.
        """
        result = await invoke_edge_function(
            CANCEL_FUNCTION,
            {"order_id": str(order_id), "reason": reason},
        )
        outcome = _provider_outcome(result)
        if not outcome.get("success"):
            raise ExternalSyncError(outcome.get("error") or "Unknown error", provider=self.name)
        logger.info("Enrollment cancelled: order=%s", order_id)
