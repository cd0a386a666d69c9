"""Repository for the webhook event ledger.

Status updates are conditional on the current status, so a row can only
move along the allowed transitions no matter how many workers race on it.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select, update, delete, and_, desc, func
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.modules.webhook.models import (
    RETAINABLE_STATUSES,
    WebhookEvent,
    WebhookEventStatus,
)

# error_message is Text, but a stack of chained errors is not worth storing.
MAX_ERROR_MESSAGE_LENGTH = 2000


def _truncate(message: str) -> str:
    return message[:MAX_ERROR_MESSAGE_LENGTH]


class WebhookEventRepository:
    """Repository for webhook event operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, event_id: str, for_update: bool = False) -> Optional[WebhookEvent]:
        query = select(WebhookEvent).where(WebhookEvent.id == event_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def create_if_absent(
        self,
        event_id: str,
        event_type: str,
        status: WebhookEventStatus,
        received_at: datetime,
        payload: Optional[dict[str, Any]] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        """Insert a ledger row unless one already exists for the event ID.

        The primary key decides concurrent inserts: the loser sees False.

        Returns:
            True if this call inserted the row
        """
        terminal = status != WebhookEventStatus.PENDING
        stmt = (
            insert(WebhookEvent)
            .values(
                id=event_id,
                type=event_type,
                status=status.value,
                payload=payload,
                received_at=received_at,
                processed_at=received_at if terminal else None,
                error_message=_truncate(error_message) if error_message else None,
            )
            .on_conflict_do_nothing(index_elements=[WebhookEvent.id])
            .returning(WebhookEvent.id)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def _transition(
        self,
        event_id: str,
        from_status: WebhookEventStatus,
        **values: Any,
    ) -> bool:
        result = await self.session.execute(
            update(WebhookEvent)
            .where(
                and_(
                    WebhookEvent.id == event_id,
                    WebhookEvent.status == from_status.value,
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def mark_processed(self, event_id: str, now: datetime) -> bool:
        return await self._transition(
            event_id,
            WebhookEventStatus.PENDING,
            status=WebhookEventStatus.PROCESSED.value,
            processed_at=now,
            error_message=None,
        )

    async def mark_ignored(self, event_id: str, reason: str, now: datetime) -> bool:
        return await self._transition(
            event_id,
            WebhookEventStatus.PENDING,
            status=WebhookEventStatus.IGNORED.value,
            processed_at=now,
            error_message=_truncate(reason),
        )

    async def mark_failed(self, event_id: str, reason: str, now: datetime) -> bool:
        return await self._transition(
            event_id,
            WebhookEventStatus.PENDING,
            status=WebhookEventStatus.FAILED.value,
            failed_at=now,
            error_message=_truncate(reason),
        )

    async def reset_for_replay(self, event_id: str) -> bool:
        """Move a FAILED row back to PENDING, clearing its failure."""
        return await self._transition(
            event_id,
            WebhookEventStatus.FAILED,
            status=WebhookEventStatus.PENDING.value,
            failed_at=None,
            error_message=None,
        )

    async def list_failed(self, limit: int = 100, offset: int = 0) -> list[WebhookEvent]:
        """Dead-lettered events, most recent failure first."""
        result = await self.session.execute(
            select(WebhookEvent)
            .where(WebhookEvent.status == WebhookEventStatus.FAILED.value)
            .order_by(desc(WebhookEvent.failed_at))
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def count_failed(self) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(WebhookEvent).where(
                WebhookEvent.status == WebhookEventStatus.FAILED.value
            )
        )
        return result.scalar_one()

    async def find_stranded_pending(self, older_than: datetime) -> list[WebhookEvent]:
        result = await self.session.execute(
            select(WebhookEvent)
            .where(
                and_(
                    WebhookEvent.status == WebhookEventStatus.PENDING.value,
                    WebhookEvent.received_at < older_than,
                )
            )
            .order_by(WebhookEvent.received_at)
        )
        return list(result.scalars().all())

    async def delete_expired(self, older_than: datetime) -> int:
        """Delete terminal non-FAILED rows received before ``older_than``.

        Returns:
            Number of rows deleted
        """
        result = await self.session.execute(
            delete(WebhookEvent).where(
                and_(
                    WebhookEvent.status.in_(RETAINABLE_STATUSES),
                    WebhookEvent.received_at < older_than,
                )
            )
        )
        return result.rowcount
