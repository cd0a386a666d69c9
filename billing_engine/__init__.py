"""Billing Engine.

Event-driven subscription billing driven by payment provider webhooks.

Modules:
    - core: Configuration, database, Redis, Celery, logging and metrics
    - modules.webhook: Webhook ingestion, event ledger and dead-letter replay
    - modules.job: Job queue, retry policy and dispatcher
    - modules.billing: Billing command handlers and subscription queries
    - modules.subscription: Plan tiers and the subscription state machine
    - modules.payment: Payment records
    - modules.usage: Organization usage counters
    - modules.scheduler: Daily expiration, renewal and retention sweeps
    - modules.audit: Audit log consumer
"""

__version__ = "0.1.0"
