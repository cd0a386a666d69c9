"""Organization usage counter model.

``current_value`` never drops below zero and never grows past ``limit``.
"""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from billing_engine.core.database import Base


class UsageResourceType(str, Enum):
    """Types of metered resources."""
    API_CALLS = "API_CALLS"


class UsageError(Exception):
    """Base exception for usage counter errors."""
    pass


class UsageLimitExceededError(UsageError):
    """Raised when an increment would go past the limit."""

    def __init__(self, resource_type: str, limit: int):
        self.resource_type = resource_type
        self.limit = limit
        super().__init__(f"Usage limit exceeded for {resource_type} (limit {limit})")


class OrganizationUsage(Base):
    """Per-organization counter for one resource type."""

    __tablename__ = "organization_usage"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    current_value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    limit: Mapped[int] = mapped_column("usage_limit", Integer, nullable=False)
    reset_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("organization_id", "resource_type", name="uq_usage_org_resource"),
    )

    @classmethod
    def create(
        cls,
        organization_id: str,
        resource_type: str,
        limit: int,
        reset_at: datetime,
    ) -> "OrganizationUsage":
        if limit < 0:
            raise UsageError(f"Usage limit must be non-negative, got {limit}")
        return cls(
            id=uuid.uuid4(),
            organization_id=organization_id,
            resource_type=resource_type,
            current_value=0,
            limit=limit,
            reset_at=reset_at,
        )

    def increment(self, amount: int = 1) -> None:
        """Add to the counter.

        Raises:
            UsageError: If amount is negative.
            UsageLimitExceededError: If the result would exceed the limit.
        """
        if amount < 0:
            raise UsageError(f"Usage increment must be non-negative, got {amount}")
        if self.current_value + amount > self.limit:
            raise UsageLimitExceededError(self.resource_type, self.limit)
        self.current_value += amount

    def reset(self, limit: int, reset_at: datetime) -> None:
        if limit < 0:
            raise UsageError(f"Usage limit must be non-negative, got {limit}")
        self.current_value = 0
        self.limit = limit
        self.reset_at = reset_at

    def is_exceeded(self) -> bool:
        return self.current_value >= self.limit
