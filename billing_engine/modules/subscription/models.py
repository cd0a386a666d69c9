"""Subscription model and its state machine.

A subscription is mutated only through the guarded transitions defined here.
ACTIVE is the only non-terminal status: CANCELED and EXPIRED can never be
left again.
"""

import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from sqlalchemy import DateTime, Index, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from billing_engine.core.database import Base


FREE_PLAN_DURATION_DAYS = 30
ORGANIZATION_ID_MAX_LENGTH = 64


class PlanTier(str, Enum):
    """Subscription plan tiers."""
    FREE = "FREE"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"


class SubscriptionStatus(str, Enum):
    """Subscription status values."""
    ACTIVE = "ACTIVE"
    CANCELED = "CANCELED"
    EXPIRED = "EXPIRED"


ALLOWED_TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    SubscriptionStatus.ACTIVE: frozenset({SubscriptionStatus.CANCELED, SubscriptionStatus.EXPIRED}),
    SubscriptionStatus.CANCELED: frozenset(),
    SubscriptionStatus.EXPIRED: frozenset(),
}


@dataclass(frozen=True)
class PlanTerms:
    """Limits and renewal price attached to a plan tier."""
    api_calls_limit: int
    renewal_price: Decimal
    currency: str = "USD"


PLAN_CATALOG: dict[PlanTier, PlanTerms] = {
    PlanTier.FREE: PlanTerms(api_calls_limit=100, renewal_price=Decimal("0.00")),
    PlanTier.PRO: PlanTerms(api_calls_limit=10_000, renewal_price=Decimal("29.00")),
    PlanTier.ENTERPRISE: PlanTerms(api_calls_limit=1_000_000, renewal_price=Decimal("299.00")),
}


class SubscriptionDomainError(Exception):
    """Base exception for subscription rule violations."""
    pass


class InvalidTransitionError(SubscriptionDomainError):
    """Raised when a transition is attempted from a status that forbids it."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Invalid subscription transition from {current} to {target}")


class SubscriptionValidationError(SubscriptionDomainError):
    """Raised when transition arguments are invalid."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_plan(value: Union[str, PlanTier, None]) -> PlanTier:
    """Resolve a plan tier from its name, case-insensitively.

    Raises:
        SubscriptionValidationError: If the plan is unknown.
    """
    if isinstance(value, PlanTier):
        return value
    if not isinstance(value, str) or not value.strip():
        raise SubscriptionValidationError(f"Unknown plan: {value!r}")
    try:
        return PlanTier(value.strip().upper())
    except ValueError:
        raise SubscriptionValidationError(f"Unknown plan: {value!r}")


def get_plan_terms(plan: Union[str, PlanTier]) -> PlanTerms:
    return PLAN_CATALOG[parse_plan(plan)]


def _period_end(start: datetime, duration_days: Union[int, float]) -> datetime:
    """Add a duration to ``start`` with whole-day granularity.

    Fractional durations are truncated, so anything below one day yields an
    empty period and is rejected.
    """
    if isinstance(duration_days, bool) or not isinstance(duration_days, (int, float)):
        raise SubscriptionValidationError(f"Duration must be a number of days, got {duration_days!r}")
    if not math.isfinite(duration_days) or duration_days <= 0:
        raise SubscriptionValidationError(f"Duration must be positive, got {duration_days!r}")

    try:
        end = start + timedelta(days=int(duration_days))
    except OverflowError:
        raise SubscriptionValidationError(f"Duration out of range: {duration_days!r}")

    if end <= start:
        raise SubscriptionValidationError(
            f"Subscription period end must be after its start (duration {duration_days!r} days)"
        )
    return end


class Subscription(Base):
    """Organization subscription.

    The latest subscription by ``created_at`` is the organization's current one.
    """

    __tablename__ = "subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    organization_id: Mapped[str] = mapped_column(
        String(ORGANIZATION_ID_MAX_LENGTH), nullable=False, index=True
    )
    plan: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    current_period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    current_period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    __table_args__ = (
        Index("ix_subscriptions_org_created", "organization_id", "created_at"),
        Index("ix_subscriptions_status_period_end", "status", "current_period_end"),
    )

    # ----------------------------------------------------------------- factories

    @classmethod
    def create(
        cls,
        organization_id: str,
        plan: Union[str, PlanTier],
        duration_days: Union[int, float],
        now: Optional[datetime] = None,
    ) -> "Subscription":
        """Create an ACTIVE subscription starting now.

        Raises:
            SubscriptionValidationError: On an empty organization, unknown plan
                or a duration that does not produce a non-empty period.
        """
        if not isinstance(organization_id, str) or not organization_id.strip():
            raise SubscriptionValidationError("Organization ID is required")
        if len(organization_id.strip()) > ORGANIZATION_ID_MAX_LENGTH:
            raise SubscriptionValidationError(
                f"Organization ID longer than {ORGANIZATION_ID_MAX_LENGTH} characters"
            )

        tier = parse_plan(plan)
        start = now or utcnow()
        end = _period_end(start, duration_days)

        return cls(
            id=uuid.uuid4(),
            organization_id=organization_id.strip(),
            plan=tier.value,
            status=SubscriptionStatus.ACTIVE.value,
            current_period_start=start,
            current_period_end=end,
            created_at=start,
        )

    @classmethod
    def create_free(cls, organization_id: str, now: Optional[datetime] = None) -> "Subscription":
        """Create the default FREE subscription given to a new organization."""
        return cls.create(organization_id, PlanTier.FREE, FREE_PLAN_DURATION_DAYS, now=now)

    # --------------------------------------------------------------- transitions

    def _transition_to(self, target: SubscriptionStatus) -> None:
        current = SubscriptionStatus(self.status)
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(current.value, target.value)
        self.status = target.value

    def _require_active(self, operation: str) -> None:
        if self.status != SubscriptionStatus.ACTIVE.value:
            raise InvalidTransitionError(self.status, operation)

    def cancel(self) -> None:
        self._transition_to(SubscriptionStatus.CANCELED)

    def expire(self) -> None:
        self._transition_to(SubscriptionStatus.EXPIRED)

    def upgrade_to(
        self,
        plan: Union[str, PlanTier],
        duration_days: Union[int, float],
        now: Optional[datetime] = None,
    ) -> None:
        """Switch to another plan with a fresh period starting now.

        Raises:
            InvalidTransitionError: If the subscription is not ACTIVE.
            SubscriptionValidationError: If the plan is unchanged or the
                duration does not produce a non-empty period.
        """
        self._require_active("UPGRADED")

        tier = parse_plan(plan)
        if tier.value == self.plan:
            raise SubscriptionValidationError(f"Subscription is already on plan {tier.value}")

        start = now or utcnow()
        end = _period_end(start, duration_days)

        self.plan = tier.value
        self.current_period_start = start
        self.current_period_end = end

    def renew(self, duration_days: Union[int, float]) -> None:
        """Extend by one period back-to-back with the previous one."""
        self._require_active("RENEWED")

        start = self.current_period_end
        end = _period_end(start, duration_days)

        self.current_period_start = start
        self.current_period_end = end

    # ----------------------------------------------------------------- queries

    def is_active(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return (
            self.status == SubscriptionStatus.ACTIVE.value
            and self.current_period_start <= now <= self.current_period_end
        )

    def is_due_for_renewal(self, now: datetime) -> bool:
        """Paid ACTIVE subscriptions past their period end, however late."""
        return (
            self.status == SubscriptionStatus.ACTIVE.value
            and self.plan != PlanTier.FREE.value
            and self.current_period_end < now
        )

    def is_due_for_expiration(self, now: datetime) -> bool:
        """FREE ACTIVE subscriptions past their period end.

        Paid subscriptions only lapse through cancellation or failed invoices.
        """
        return (
            self.status == SubscriptionStatus.ACTIVE.value
            and self.plan == PlanTier.FREE.value
            and self.current_period_end < now
        )

    def __repr__(self) -> str:
        return (
            f"<Subscription id={self.id} org={self.organization_id} "
            f"plan={self.plan} status={self.status}>"
        )
