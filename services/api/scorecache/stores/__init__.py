"""Data stores for persistence, caching and job delivery.

Stores handle:
- PostgreSQL: DB session, dialect-aware upserts
- Redis: client lifecycle, key naming
- Memory: process-local LRU + TTL tier
- Queue: delayed jobs with unique keys and leases

No scoring logic in stores - that belongs in services.
"""
