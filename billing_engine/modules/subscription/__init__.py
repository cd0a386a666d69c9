"""Subscription module: plan tiers, state machine and persistence."""
