"""Integration tests for admin subscription lifecycle endpoints."""

from unittest.mock import AsyncMock, MagicMock, patch
from uuid import UUID

from fastapi.testclient import TestClient

from src.api.middleware.error_handler import NotFoundError, ValidationError
from src.schemas.subscription import SubscriptionActionResponse

SUBSCRIPTION_ID = "66666666-6666-4666-8666-666666666666"
URL = f"/api/v1/admin/subscriptions/{SUBSCRIPTION_ID}/actions"


def _state_machine(**kwargs) -> MagicMock:
    service = MagicMock()
    service.perform = AsyncMock(**kwargs)
    return service


class TestPerformAction:
    """Tests for POST /api/v1/admin/subscriptions/{id}/actions."""

    def test_requires_authentication(self, client: TestClient) -> None:
        """Test that the endpoint rejects requests without a token."""
        response = client.post(URL, json={"action": "cancel"})

        assert response.status_code == 401

    def test_rejects_non_admin(self, client: TestClient) -> None:
        """Test that an authenticated non-admin gets 403."""
        from src.api.deps import get_current_user
        from src.main import app
        from src.schemas.auth import UserContext

        app.dependency_overrides[get_current_user] = lambda: UserContext(
            user_id=UUID("22222222-2222-4222-8222-222222222222")
        )
        try:
            with patch("src.api.deps.has_role", return_value=False):
                response = client.post(URL, json={"action": "cancel"})
        finally:
            app.dependency_overrides.pop(get_current_user, None)

        assert response.status_code == 403
        data = response.json()
        assert data["error"] == "authorization_error"
        assert data["message"] == "Admin role required"

    @patch("src.api.routes.subscriptions.SubscriptionLifecycleStateMachine")
    def test_extend(self, mock_cls: MagicMock, admin_client: TestClient) -> None:
        """Test that the action and its arguments reach the state machine."""
        service = _state_machine(
            return_value=SubscriptionActionResponse(subscription_id=UUID(SUBSCRIPTION_ID), action="extend")
        )
        mock_cls.return_value = service

        response = admin_client.post(URL, json={"action": "extend", "days": 10, "reason": "support"})

        assert response.status_code == 200
        assert response.json()["action"] == "extend"
        subscription_id, request = service.perform.await_args.args
        assert subscription_id == UUID(SUBSCRIPTION_ID)
        assert request.days == 10
        assert request.reason == "support"

    @patch("src.api.routes.subscriptions.SubscriptionLifecycleStateMachine")
    def test_delete_reports_deleted(self, mock_cls: MagicMock, admin_client: TestClient) -> None:
        """Test the delete response has no subscription body."""
        mock_cls.return_value = _state_machine(
            return_value=SubscriptionActionResponse(
                subscription_id=UUID(SUBSCRIPTION_ID), action="delete", deleted=True
            )
        )

        response = admin_client.post(URL, json={"action": "delete"})

        data = response.json()
        assert data["deleted"] is True
        assert data["subscription"] is None

    @patch("src.api.routes.subscriptions.SubscriptionLifecycleStateMachine")
    def test_invalid_transition_returns_422(self, mock_cls: MagicMock, admin_client: TestClient) -> None:
        """Test that a rejected transition maps to 422."""
        mock_cls.return_value = _state_machine(side_effect=ValidationError("Subscription is already canceled"))

        response = admin_client.post(URL, json={"action": "cancel"})

        assert response.status_code == 422
        assert response.json()["message"] == "Subscription is already canceled"

    @patch("src.api.routes.subscriptions.SubscriptionLifecycleStateMachine")
    def test_unknown_subscription_returns_404(self, mock_cls: MagicMock, admin_client: TestClient) -> None:
        """Test that a missing subscription maps to 404."""
        mock_cls.return_value = _state_machine(side_effect=NotFoundError("Subscription not found"))

        response = admin_client.post(URL, json={"action": "pause"})

        assert response.status_code == 404

    def test_rejects_unknown_action(self, admin_client: TestClient) -> None:
        """Test request validation of the action name."""
        response = admin_client.post(URL, json={"action": "upgrade"})

        assert response.status_code == 422
