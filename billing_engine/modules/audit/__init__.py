"""Audit log consumer."""
