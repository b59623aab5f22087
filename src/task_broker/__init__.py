"""Persisted, poll-based work queue with race-safe claiming."""

__version__ = "0.1.0"
