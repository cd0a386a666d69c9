"""Webhook event ledger model.

One row per provider event ID. Status only moves forward:
PENDING -> PROCESSED | FAILED | IGNORED, and FAILED -> PENDING on replay.
UNHANDLED rows are written terminal at ingestion.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import DateTime, Index, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from billing_engine.core.database import Base


class WebhookEventStatus(str, Enum):
    """Lifecycle status of a received provider event."""
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"
    IGNORED = "IGNORED"
    UNHANDLED = "UNHANDLED"


# Terminal states the retention sweep may delete. FAILED rows stay for replay.
RETAINABLE_STATUSES = (
    WebhookEventStatus.PROCESSED.value,
    WebhookEventStatus.IGNORED.value,
    WebhookEventStatus.UNHANDLED.value,
)


class WebhookEvent(Base):
    """Provider event as received, keyed by the provider event ID."""

    __tablename__ = "webhook_events"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    type: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=WebhookEventStatus.PENDING.value
    )
    payload: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_webhook_events_status_failed_at", "status", "failed_at"),
        Index("ix_webhook_events_status_received_at", "status", "received_at"),
    )

    def __repr__(self) -> str:
        return f"<WebhookEvent id={self.id} type={self.type} status={self.status}>"
