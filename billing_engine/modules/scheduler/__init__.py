"""Scheduled billing sweeps and their beat registration."""
