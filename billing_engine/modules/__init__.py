"""Application modules.

- webhook: Provider webhook ingestion, ledger and DLQ replay
- job: Background job processing with retry and dead-lettering
- billing: Billing command handlers and subscription status
- subscription: Subscription state machine
- payment: Payment records
- usage: Usage counters and limits
- scheduler: Scheduled sweeps
- audit: Audit log consumer
"""
