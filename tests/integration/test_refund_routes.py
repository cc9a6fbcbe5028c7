"""Integration tests for admin refund endpoints."""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import UUID

from fastapi.testclient import TestClient

from src.api.middleware.error_handler import RefundProviderError, ValidationError
from src.schemas.refund import RefundResponse

ORDER_ID = "55555555-5555-4555-8555-555555555555"
PAYMENT_ID = "99999999-9999-4999-8999-999999999999"
URL = f"/api/v1/admin/orders/{ORDER_ID}/refunds"
BODY = {"amount": "100.00", "reason": "duplicate charge", "policy": "revoke"}


def _orchestrator(**kwargs) -> MagicMock:
    service = MagicMock()
    service.refund = AsyncMock(**kwargs)
    return service


class TestRefundOrder:
    """Tests for POST /api/v1/admin/orders/{id}/refunds."""

    def test_requires_authentication(self, client: TestClient) -> None:
        """Test that the endpoint rejects requests without a token."""
        response = client.post(URL, json=BODY)

        assert response.status_code == 401

    @patch("src.api.routes.refunds.RefundOrchestrator")
    def test_full_refund(self, mock_cls: MagicMock, admin_client: TestClient) -> None:
        """Test a successful refund response."""
        service = _orchestrator(
            return_value=RefundResponse(
                order_id=UUID(ORDER_ID),
                payment_id=UUID(PAYMENT_ID),
                amount=Decimal("100.00"),
                currency="BYN",
                order_status="refunded",
                provider_refund_id="re_123",
                policy="revoke",
                access_outcome="revoked",
            )
        )
        mock_cls.return_value = service

        response = admin_client.post(URL, json=BODY)

        assert response.status_code == 200
        data = response.json()
        assert data["order_status"] == "refunded"
        assert data["access_outcome"] == "revoked"
        request = service.refund.await_args.args[1]
        assert request.amount == Decimal("100.00")

    @patch("src.api.routes.refunds.RefundOrchestrator")
    def test_provider_failure_returns_502(self, mock_cls: MagicMock, admin_client: TestClient) -> None:
        """Test that a failed provider refund maps to 502."""
        mock_cls.return_value = _orchestrator(side_effect=RefundProviderError("card issuer declined"))

        response = admin_client.post(URL, json=BODY)

        assert response.status_code == 502
        assert response.json()["error"] == "refund_provider_error"

    @patch("src.api.routes.refunds.RefundOrchestrator")
    def test_policy_mismatch_returns_422(self, mock_cls: MagicMock, admin_client: TestClient) -> None:
        """Test that a rejected policy maps to 422."""
        mock_cls.return_value = _orchestrator(side_effect=ValidationError("The revoke policy requires a full refund"))

        response = admin_client.post(URL, json={**BODY, "amount": "10.00"})

        assert response.status_code == 422

    def test_rejects_unknown_policy(self, admin_client: TestClient) -> None:
        """Test request validation of the policy field."""
        response = admin_client.post(URL, json={**BODY, "policy": "partial"})

        assert response.status_code == 422
