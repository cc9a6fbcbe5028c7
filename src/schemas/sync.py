"""External sync result schemas."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# Provider names used as keys of subscriptions.meta.sync_results
COMMUNITY_PROVIDER = "telegram"
ENROLLMENT_PROVIDER = "getcourse"


class SyncResult(BaseModel):
    """Recorded outcome of one external provider call."""

    model_config = ConfigDict(from_attributes=True)

    success: bool = Field(description="Whether the provider accepted the call")
    error: str | None = Field(default=None, description="Provider or transport error message")

    @classmethod
    def ok(cls) -> "SyncResult":
        return cls(success=True)

    @classmethod
    def failed(cls, error: str) -> "SyncResult":
        return cls(success=False, error=error)

    def to_entry(self) -> dict[str, Any]:
        """Shape persisted in subscriptions.meta.sync_results."""
        return self.model_dump(exclude_none=True)


def sync_results_to_entries(results: dict[str, SyncResult]) -> dict[str, dict[str, Any]]:
    """Serialize a provider -> SyncResult map for storage."""
    return {provider: result.to_entry() for provider, result in results.items()}


def sync_warnings(results: dict[str, SyncResult]) -> list[str]:
    """Turn failed sync results into caller-facing warnings."""
    return [
        f"{provider} sync failed: {result.error or 'unknown error'}"
        for provider, result in results.items()
        if not result.success
    ]
