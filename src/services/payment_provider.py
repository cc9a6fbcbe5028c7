"""Payment provider refunds via Stripe."""

import asyncio
import logging
from decimal import Decimal
from typing import Any

import stripe

from src.api.middleware.error_handler import RefundProviderError
from src.core.config import get_settings
from src.core.stripe import get_stripe

logger = logging.getLogger(__name__)

STRIPE_PROVIDER = "stripe"


def to_minor_units(amount: Decimal) -> int:
    """Convert a currency amount to integer minor units (cents, kopecks)."""
    return int((amount * 100).quantize(Decimal("1")))


class PaymentProvider:
    """Returns money for a settled payment. A failure here is always fatal."""

    def __init__(self) -> None:
        self.stripe = get_stripe()
        self.settings = get_settings()

    async def refund(self, payment: dict[str, Any], amount: Decimal) -> str:
        """Refund ``amount`` of a payment.

        Args:
            payment: Payment row; must have provider 'stripe' and a provider_payment_id.
            amount: Amount in major units.

        Returns:
            str: The provider's refund identifier.

        Raises:
            RefundProviderError: If the refund is rejected, fails, or times out.
        """
        if payment.get("provider") != STRIPE_PROVIDER or not payment.get("provider_payment_id"):
            raise RefundProviderError(
                f"Payment {payment['id']} cannot be refunded through the payment provider "
                f"(provider={payment.get('provider')!r})"
            )
        if not self.settings.stripe_secret_key:
            raise RefundProviderError("Stripe is not configured. Please set STRIPE_SECRET_KEY environment variable.")

        # Retries of the same refund reuse this key
        already_refunded = to_minor_units(Decimal(str(payment.get("refunded_amount") or 0)))
        idempotency_key = f"refund-{payment['id']}-{already_refunded}-{to_minor_units(amount)}"

        try:
            refund = await asyncio.wait_for(
                asyncio.to_thread(
                    self.stripe.Refund.create,
                    payment_intent=payment["provider_payment_id"],
                    amount=to_minor_units(amount),
                    metadata={"payment_id": str(payment["id"]), "order_id": str(payment["order_id"])},
                    idempotency_key=idempotency_key,
                ),
                timeout=self.settings.refund_call_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.error("Stripe refund timed out for payment %s", payment["id"])
            raise RefundProviderError("Refund provider timed out; no changes were made") from e
        except stripe.error.StripeError as e:
            logger.error("Stripe error refunding payment %s: %s", payment["id"], str(e))
            raise RefundProviderError(f"Refund provider rejected the refund: {e.user_message or e}") from e

        if getattr(refund, "status", None) in ("failed", "canceled"):
            raise RefundProviderError(f"Refund {refund.id} ended with status {refund.status}")

        logger.info("Stripe refund %s created for payment %s", refund.id, payment["id"])
        return refund.id
