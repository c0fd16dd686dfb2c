"""Entitlement change event published to the owning user's profile."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class EntitlementChange(BaseModel):
    """Entitlement flag update for a user profile."""

    version: str = Field(default="1.0", description="Event schema version")
    user_id: str = Field(..., description="Owning user")
    is_subscribed: bool = Field(..., description="Whether paid features are unlocked")
    subscription_id: Optional[str] = Field(None, description="Granting subscription, None on revocation")
    subscription_end_date: Optional[datetime] = Field(None, description="End of the granted period")
    event_time: datetime = Field(..., description="When the change was produced")

    class Config:
        json_schema_extra = {
            "example": {
                "version": "1.0",
                "user_id": "user-123",
                "is_subscribed": True,
                "subscription_id": "sub_a1b2c3d4e5f6a7b8_1700000000000",
                "subscription_end_date": "2025-01-31T00:00:00Z",
                "event_time": "2025-01-01T00:00:00Z",
            }
        }
