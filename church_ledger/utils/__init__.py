"""Shared helpers: deterministic hashing and idempotency keys."""
