"""Organization usage counters."""
