"""SQLite-backed task queue with competing brokers."""
