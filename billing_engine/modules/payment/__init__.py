"""Payment records."""
