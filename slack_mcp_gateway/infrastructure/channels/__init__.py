"""Chat frontend adapters."""
