"""Refunds and their effect on access.

The payment provider is called first. If it fails nothing is written, so
the ledger never claims money was returned when it was not.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from src.api.middleware.error_handler import LedgerError, NotFoundError, ValidationError
from src.models.order import Order, OrderUpdate
from src.models.payment import Payment, PaymentUpdate
from src.models.subscription import Subscription
from src.schemas.audit import RefundMeta
from src.schemas.refund import AccessOutcome, RefundRequest, RefundResponse
from src.schemas.sync import sync_warnings
from src.services.audit_service import AuditRecorder
from src.services.entitlement_ledger import EntitlementLedger, parse_timestamp
from src.services.payment_provider import PaymentProvider
from src.services.subscription_lifecycle_service import (
    SubscriptionLifecycleStateMachine,
    Transition,
    require_positive_days,
)

logger = logging.getLogger(__name__)


def _money(value: Any) -> Decimal:
    return Decimal(str(value if value is not None else 0))


def validate_refund(request: RefundRequest, final_price: Decimal) -> bool:
    """Check amount, reason and policy against the order price.

    Returns:
        bool: True when the refund covers the whole order price.

    Raises:
        ValidationError: If the request is not acceptable.
    """
    if not request.reason or not request.reason.strip():
        raise ValidationError("A refund reason is required")
    if request.amount <= 0:
        raise ValidationError("Refund amount must be greater than zero")
    if request.amount > final_price:
        raise ValidationError(f"Refund amount {request.amount} exceeds the order price {final_price}")

    is_full = request.amount == final_price
    if request.policy == "revoke" and not is_full:
        raise ValidationError("The revoke policy requires a full refund")
    if request.policy == "keep" and is_full:
        raise ValidationError("The keep policy is only valid for partial refunds; use keep_subscription or revoke")
    if request.policy == "reduce":
        try:
            require_positive_days(request.reduce_days)
        except ValidationError as e:
            raise ValidationError("The reduce policy requires reduce_days >= 1") from e
    return is_full


def select_payment(payments: list[Payment], amount: Decimal) -> Payment:
    """Pick the newest payment whose unrefunded remainder covers ``amount``.

    Raises:
        ValidationError: If the order's refundable total is smaller than
            ``amount`` or no single payment covers it.
    """
    refundable = sum((_money(p["amount"]) - _money(p.get("refunded_amount")) for p in payments), Decimal("0"))
    if amount > refundable:
        raise ValidationError(f"Refund amount {amount} exceeds the refundable total {refundable}")
    for payment in payments:
        if _money(payment["amount"]) - _money(payment.get("refunded_amount")) >= amount:
            return payment
    raise ValidationError(
        f"No single payment covers {amount}; refund each payment separately"
    )


class RefundOrchestrator:
    """Refunds an order and applies the chosen access-impact policy."""

    def __init__(
        self,
        ledger: EntitlementLedger | None = None,
        payments: PaymentProvider | None = None,
        lifecycle: SubscriptionLifecycleStateMachine | None = None,
        audit: AuditRecorder | None = None,
    ) -> None:
        self.ledger = ledger or EntitlementLedger()
        self.payments = payments or PaymentProvider()
        self.lifecycle = lifecycle or SubscriptionLifecycleStateMachine(ledger=self.ledger)
        self.audit = audit or AuditRecorder(self.ledger)

    async def refund(
        self,
        order_id: UUID | str,
        request: RefundRequest,
        actor_id: UUID | None,
        now: datetime | None = None,
    ) -> RefundResponse:
        """Refund part or all of an order.

        Args:
            order_id: Order to refund.
            request: Amount, reason and access-impact policy.
            actor_id: Admin performing the refund.
            now: Current instant, defaults to the wall clock.

        Returns:
            RefundResponse: Provider refund id, new order status and access outcome.

        Raises:
            ValidationError: Bad amount, reason or policy; nothing was done.
            NotFoundError: Unknown order.
            RefundProviderError: The provider refund failed; nothing was written.
            LedgerError: The money was returned but the refund could not be recorded.
        """
        now = now or datetime.now(timezone.utc)
        order = await self.ledger.get_order(order_id)
        if not order:
            raise NotFoundError("Order not found")
        final_price = _money(order.get("final_price"))
        is_full = validate_refund(request, final_price)
        payment = select_payment(await self.ledger.get_succeeded_payments(order["id"]), request.amount)

        provider_refund_id = await self.payments.refund(payment, request.amount)

        order_update, payment_update = self._refund_updates(order, payment, request, is_full, provider_refund_id, now)
        try:
            recorded = await self.ledger.record_refund(order["id"], order_update, payment["id"], payment_update)
        except LedgerError as e:
            logger.error(
                "Refund %s issued for order %s but not recorded: %s", provider_refund_id, order["id"], e.message
            )
            raise LedgerError(
                f"Refund {provider_refund_id} was issued but could not be recorded: {e.message}"
            ) from e
        order_status = (recorded.get("order") or {}).get("status") or order_update.get("status") or order["status"]

        warnings: list[str] = []
        subscription = await self._find_subscription(order, now)
        outcome: AccessOutcome
        transition: Transition | None = None
        if subscription is None:
            outcome = "no_subscription"
        elif request.policy in ("keep", "keep_subscription"):
            outcome = "unchanged"
        else:
            try:
                if request.policy == "revoke":
                    transition = await self.lifecycle.apply_revoke(subscription, "refund", now)
                else:
                    transition = await self.lifecycle.apply_reduce(subscription, request.reduce_days, "refund", now)
            except LedgerError as e:
                logger.error("Refund policy %s not applied to %s: %s", request.policy, subscription["id"], e.message)
                warnings.append(f"Access policy {request.policy} not applied: {e.message}")
                outcome = "unchanged"
            else:
                outcome = "revoked" if transition.revoked else "reduced"
                warnings.extend(transition.warnings)

        sync_results = transition.sync_results if transition else {}
        warnings.extend(sync_warnings(sync_results))
        current = transition.subscription if transition and transition.subscription else subscription
        access_end_at = parse_timestamp(current.get("access_end_at")) if current else None

        await self.audit.record_safely(
            actor_id,
            "admin.subscription.refund",
            order.get("user_id"),
            RefundMeta(
                order_id=order["id"],
                payment_id=payment["id"],
                subscription_id=subscription["id"] if subscription else None,
                amount=request.amount,
                currency=order.get("currency") or payment.get("currency"),
                reason=request.reason,
                policy=request.policy,
                reduce_days=request.reduce_days,
                provider_refund_id=provider_refund_id,
                order_status=order_status,
                access_outcome=outcome,
                access_end=access_end_at,
            ),
            warnings,
        )
        logger.info(
            "Order %s refunded %s (%s), policy=%s outcome=%s",
            order["id"],
            request.amount,
            "full" if is_full else "partial",
            request.policy,
            outcome,
        )

        return RefundResponse(
            order_id=order["id"],
            payment_id=payment["id"],
            amount=request.amount,
            currency=order.get("currency") or payment.get("currency"),
            order_status=order_status,
            provider_refund_id=provider_refund_id,
            policy=request.policy,
            access_outcome=outcome,
            subscription_id=subscription["id"] if subscription else None,
            access_end_at=access_end_at,
            sync_results=sync_results,
            warnings=warnings,
        )

    async def _find_subscription(self, order: Order, now: datetime) -> Subscription | None:
        """The subscription the order created, or the one it extended."""
        subscription = await self.ledger.find_subscription_for_order(order["id"])
        if subscription:
            return subscription
        if not order.get("user_id"):
            return None
        open_subscription = await self.ledger.find_open_subscription(
            order["user_id"], order["product_id"], order["tariff_id"], now
        )
        if not open_subscription:
            return None
        # Reload with product and tariff for the external revoke calls
        return await self.ledger.get_subscription(open_subscription["id"])

    def _refund_updates(
        self,
        order: Order,
        payment: Payment,
        request: RefundRequest,
        is_full: bool,
        provider_refund_id: str,
        now: datetime,
    ) -> tuple[OrderUpdate, PaymentUpdate]:
        """Build the order and payment updates for admin_record_refund."""
        payment_refunded = _money(payment.get("refunded_amount")) + request.amount
        payment_update: PaymentUpdate = {
            "refunded_amount": str(payment_refunded),
            "refunds": list(payment.get("refunds") or [])
            + [
                {
                    "amount": str(request.amount),
                    "reason": request.reason,
                    "provider_refund_id": provider_refund_id,
                    "status": "succeeded",
                    "created_at": now.isoformat(),
                }
            ],
        }
        if payment_refunded >= _money(payment["amount"]):
            payment_update["status"] = "refunded"

        meta = dict(order.get("meta") or {})
        meta["refunds"] = list(meta.get("refunds") or []) + [
            {
                "payment_id": str(payment["id"]),
                "amount": str(request.amount),
                "reason": request.reason,
                "policy": request.policy,
                "provider_refund_id": provider_refund_id,
                "refunded_at": now.isoformat(),
            }
        ]
        order_update: OrderUpdate = {
            "refunded_amount": str(_money(order.get("refunded_amount")) + request.amount),
            "meta": meta,
        }
        if is_full and request.policy != "keep_subscription":
            order_update["status"] = "refunded"
        return order_update, payment_update
