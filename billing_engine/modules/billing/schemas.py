"""Pydantic schemas for subscription queries."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class SubscriptionSummary(BaseModel):
    """Current subscription of an organization."""
    id: uuid.UUID
    plan: str
    status: str
    current_period_start: datetime
    current_period_end: datetime
    is_active: bool


class SubscriptionStatusResponse(BaseModel):
    organization_id: str
    subscription: Optional[SubscriptionSummary] = None
