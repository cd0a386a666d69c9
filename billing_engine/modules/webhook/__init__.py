"""Webhook ingestion, event ledger and dead-letter replay."""
