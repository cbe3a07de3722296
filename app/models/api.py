"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from app.models.domain import AdPlatform, GrantOutcome, RewardType

# ============================================================================
# Reward Webhook Models
# ============================================================================


class RewardCallbackResponse(BaseModel):
    """Response for AdMob and AppLovin reward webhooks."""

    status: Literal["granted", "already_processed"]
    platform: AdPlatform
    transaction_id: str
    reward_type: RewardType
    expires_at: datetime | None = Field(
        None, description="New entitlement expiry (absent for replays)"
    )

    @classmethod
    def from_outcome(cls, outcome: GrantOutcome) -> "RewardCallbackResponse":
        """Build the response from a grant outcome."""
        return cls(
            status="already_processed" if outcome.already_processed else "granted",
            platform=outcome.platform,
            transaction_id=outcome.transaction_id,
            reward_type=outcome.reward_type,
            expires_at=outcome.expires_at,
        )


# ============================================================================
# Health Models
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: Literal["healthy", "unhealthy"]
    database: Literal["connected", "disconnected"]
    timestamp: str

