"""
Ledger services.  Import concrete services from their modules, e.g.
``from church_ledger.services.posting_service import PostingService``.
"""
