"""Admin subscription lifecycle API routes."""

from uuid import UUID

from fastapi import APIRouter

from src.api.deps import CurrentAdmin
from src.schemas.subscription import SubscriptionActionRequest, SubscriptionActionResponse
from src.services.subscription_lifecycle_service import SubscriptionLifecycleStateMachine

router = APIRouter(prefix="/admin/subscriptions", tags=["admin-subscriptions"])


@router.post(
    "/{subscription_id}/actions",
    response_model=SubscriptionActionResponse,
    summary="Run a lifecycle action",
    description=(
        "Runs one of cancel, resume, extend, grant_access, revoke_access, delete, "
        "toggle_auto_renew, pause or set_end_date against a subscription."
    ),
    responses={
        404: {"description": "Subscription not found"},
        422: {"description": "Action not valid for this subscription or bad arguments"},
    },
)
async def perform_action(
    subscription_id: UUID,
    data: SubscriptionActionRequest,
    admin: CurrentAdmin,
) -> SubscriptionActionResponse:
    """Perform a lifecycle action on behalf of the authenticated admin.

    Args:
        subscription_id: Target subscription.
        data: Action name and its arguments.
        admin: The admin performing the action.

    Returns:
        SubscriptionActionResponse: Updated subscription, sync results and warnings.
    """
    service = SubscriptionLifecycleStateMachine()
    return await service.perform(subscription_id, data, actor_id=admin.user_id)
