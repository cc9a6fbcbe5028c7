"""Admin refund API routes."""

from uuid import UUID

from fastapi import APIRouter

from src.api.deps import CurrentAdmin
from src.schemas.refund import RefundRequest, RefundResponse
from src.services.refund_service import RefundOrchestrator

router = APIRouter(prefix="/admin/orders", tags=["admin-refunds"])


@router.post(
    "/{order_id}/refunds",
    response_model=RefundResponse,
    summary="Refund an order",
    description=(
        "Refunds part or all of an order through the payment provider, records the refund "
        "and applies the access-impact policy (revoke, reduce, keep, keep_subscription)."
    ),
    responses={
        404: {"description": "Order not found"},
        422: {"description": "Invalid amount, reason or policy"},
        502: {"description": "Payment provider refund failed, nothing was changed"},
    },
)
async def refund_order(order_id: UUID, data: RefundRequest, admin: CurrentAdmin) -> RefundResponse:
    """Refund an order on behalf of the authenticated admin."""
    service = RefundOrchestrator()
    return await service.refund(order_id, data, actor_id=admin.user_id)
