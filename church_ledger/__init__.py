"""
Church Ledger - double-entry posting kernel for a church finance portal.

An append-only accounting core with:
- Balanced journal transactions built from business events
- Atomic commit of the business record and its ledger postings
- Idempotent posting keyed by the business record
- Reversal by offsetting entries, never by mutation
- Hash-chained audit log
"""

__version__ = "0.1.0"
