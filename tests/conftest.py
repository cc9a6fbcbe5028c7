"""Pytest configuration and fixtures."""

import os
from collections.abc import Generator
from datetime import datetime, timezone
from typing import Any
from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("SUPABASE_SIGNING_KEY_JWK", "test-signing-key-jwk")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_stripe_secret_key")
os.environ.setdefault("RESEND_API_KEY", "re_test_key")
os.environ.setdefault("ADMIN_NOTIFICATION_EMAILS", "ops@example.com")

from src.services.community_provider import CommunityProvider  # noqa: E402
from src.services.enrollment_provider import EnrollmentProvider  # noqa: E402
from src.services.entitlement_ledger import EntitlementLedger  # noqa: E402
from src.services.external_sync_service import ExternalSyncCoordinator  # noqa: E402
from src.services.notification_service import AdminNotifier  # noqa: E402

ADMIN_ID = "11111111-1111-4111-8111-111111111111"
USER_ID = "22222222-2222-4222-8222-222222222222"
PRODUCT_ID = "33333333-3333-4333-8333-333333333333"
TARIFF_ID = "44444444-4444-4444-8444-444444444444"


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from src.core.config import get_settings

    get_settings.cache_clear()
    settings = get_settings()
    yield settings
    get_settings.cache_clear()


@pytest.fixture
def mock_supabase_client() -> Generator[MagicMock, None, None]:
    """Provide a mocked Supabase client.

    Yields:
        MagicMock: Mocked Supabase client for testing.
    """
    mock_client = MagicMock()

    mock_response = MagicMock()
    mock_response.data = []
    mock_client.table.return_value.select.return_value.limit.return_value.execute.return_value = (
        mock_response
    )

    with patch("src.core.supabase.get_supabase_client", return_value=mock_client):
        yield mock_client


@pytest.fixture
def client(mock_supabase_client: MagicMock) -> Generator[TestClient, None, None]:
    """Provide a test client for the FastAPI application.

    Yields:
        TestClient: FastAPI test client.
    """
    from src.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_client(mock_supabase_client: MagicMock) -> Generator[TestClient, None, None]:
    """Test client whose requests are authenticated as an admin.

    Yields:
        TestClient: FastAPI test client with the admin dependency overridden.
    """
    from uuid import UUID

    from src.api.deps import get_current_admin
    from src.main import app
    from src.schemas.auth import UserContext

    app.dependency_overrides[get_current_admin] = lambda: UserContext(
        user_id=UUID(ADMIN_ID), email="admin@example.com", role="authenticated"
    )
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.pop(get_current_admin, None)


# Engine fixtures


@pytest.fixture
def ledger() -> MagicMock:
    """Mocked EntitlementLedger; async methods are AsyncMocks.

    ``rows`` holds subscription rows by id so that the merge of sync
    results returns the full row like the real ledger does.
    """
    mock = MagicMock(spec=EntitlementLedger)
    mock.rows = {}
    mock.insert_audit_log.return_value = {"id": str(uuid4())}
    mock.create_access_grant_record.return_value = {"id": str(uuid4())}

    async def merge_sync_results(subscription_id, current_meta, entries, synced_at):
        meta = dict(current_meta or {})
        meta["sync_results"] = {**meta.get("sync_results", {}), **entries}
        meta["synced_at"] = synced_at.isoformat()
        row = {**mock.rows.get(str(subscription_id), {"id": str(subscription_id)}), "meta": meta}
        mock.rows[str(subscription_id)] = row
        return row

    mock.merge_sync_results.side_effect = merge_sync_results
    return mock


@pytest.fixture
def community() -> MagicMock:
    """Mocked community provider."""
    mock = MagicMock(spec=CommunityProvider)
    mock.name = "telegram"
    return mock


@pytest.fixture
def enrollment() -> MagicMock:
    """Mocked enrollment provider."""
    mock = MagicMock(spec=EnrollmentProvider)
    mock.name = "getcourse"
    return mock


@pytest.fixture
def sync(community: MagicMock, enrollment: MagicMock) -> ExternalSyncCoordinator:
    """Real sync coordinator around mocked providers."""
    return ExternalSyncCoordinator(community=community, enrollment=enrollment)


@pytest.fixture
def notifier() -> MagicMock:
    """Mocked admin notifier."""
    return MagicMock(spec=AdminNotifier)


@pytest.fixture
def product() -> dict:
    """Product with a community club."""
    return {"id": PRODUCT_ID, "name": "Club", "code": "club", "community_club_id": "club-1"}


@pytest.fixture
def tariff() -> dict:
    """Tariff with an enrollment offer."""
    return {
        "id": TARIFF_ID,
        "product_id": PRODUCT_ID,
        "name": "Monthly",
        "code": "monthly",
        "enrollment_offer_id": "offer-42",
        "enrollment_offer_code": "MONTHLY",
        "access_days": 30,
    }


@pytest.fixture
def subscription(product: dict, tariff: dict) -> dict:
    """Active subscription joined with its product and tariff."""
    return {
        "id": str(uuid4()),
        "user_id": USER_ID,
        "order_id": str(uuid4()),
        "product_id": PRODUCT_ID,
        "tariff_id": TARIFF_ID,
        "status": "active",
        "is_trial": False,
        "access_start_at": "2024-01-01T00:00:00+00:00",
        "access_end_at": "2024-03-01T23:59:59+00:00",
        "cancel_at": None,
        "canceled_at": None,
        "next_charge_at": "2024-03-01T23:59:59+00:00",
        "auto_renew_enabled": True,
        "payment_method_id": None,
        "charge_attempts": 0,
        "meta": {},
        "products": product,
        "tariffs": tariff,
    }


@pytest.fixture
def now() -> datetime:
    """Fixed current instant."""
    return datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)

