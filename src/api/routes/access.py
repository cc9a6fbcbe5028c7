"""Admin access grant API routes."""

from fastapi import APIRouter, status

from src.api.deps import CurrentAdmin
from src.schemas.access import GrantAccessRequest, GrantAccessResponse
from src.services.access_grant_service import AccessGrantOrchestrator

router = APIRouter(prefix="/admin/access", tags=["admin-access"])


@router.post(
    "/grants",
    response_model=GrantAccessResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Grant or extend access",
    description=(
        "Creates a paid order and payment, then extends the user's open subscription for the "
        "product and tariff or creates a new one. External sync failures are returned as warnings. "
        "With mode=record_only only the order is booked."
    ),
    responses={
        404: {"description": "Product or tariff not found"},
        422: {"description": "Invalid access window or mode"},
        500: {"description": "Ledger transaction failed, nothing was written"},
    },
)
async def grant_access(data: GrantAccessRequest, admin: CurrentAdmin) -> GrantAccessResponse:
    """Grant access on behalf of the authenticated admin.

    Args:
        data: Grant parameters.
        admin: The admin performing the grant.

    Returns:
        GrantAccessResponse: Order, subscription, sync results and warnings.
    """
    service = AccessGrantOrchestrator()
    return await service.grant_access(data, actor_id=admin.user_id)
