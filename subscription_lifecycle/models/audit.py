"""Audit trail models for subscription actions."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class SubscriptionAction(str, Enum):
    """Actions recorded in the audit log."""

    CREATE = "create"
    ACTIVATE = "activate"
    EXTEND = "extend"
    REVOKE = "revoke"
    EXPIRE = "expire"


class SubscriptionLogEntry(BaseModel):
    """Append-only audit entry. Immutable once written."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique log entry id")
    subscription_id: str = Field(..., description="Subscription the action applied to")
    action: SubscriptionAction = Field(..., description="Action performed")
    admin_id: Optional[str] = Field(None, description="Acting administrator, None for system actions")
    reason: Optional[str] = Field(None, description="Free-text reason")
    details: dict[str, Any] = Field(default_factory=dict, description="Structured action details")
    created_at: datetime = Field(..., description="When the action was recorded")
