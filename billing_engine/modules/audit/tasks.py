"""Audit log consumer tasks.

Subscription changes arrive here after their transaction committed and are
written to the ``billing_engine.audit`` logger as structured records.
"""

import logging

from billing_engine.core.celery_app import celery_app
from billing_engine.core.logging import AUDIT_LOGGER_NAME, set_correlation_id

audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)

REQUIRED_FIELDS = ("organization_id", "action", "entity_type", "entity_id")


@celery_app.task(name="billing_engine.modules.audit.tasks.record_subscription_change")
def record_subscription_change(record: dict) -> dict:
    """Write one audit record.

    Args:
        record: ``SubscriptionChanged.to_dict()`` output

    Returns:
        dict with the recorded action, or a rejection reason
    """
    missing = [name for name in REQUIRED_FIELDS if not record.get(name)]
    if missing:
        audit_logger.warning(
            "Discarding malformed audit record",
            extra={"missing_fields": missing},
        )
        return {"status": "rejected", "missing_fields": missing}

    set_correlation_id(str(record["entity_id"]))
    audit_logger.info(
        record["action"],
        extra={
            "organization_id": record["organization_id"],
            "entity_type": record["entity_type"],
            "entity_id": record["entity_id"],
            "metadata": record.get("metadata") or {},
            "occurred_at": record.get("occurred_at"),
        },
    )
    return {"status": "recorded", "action": record["action"]}
