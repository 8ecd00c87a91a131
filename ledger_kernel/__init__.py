"""
Ledger Kernel - creator/marketplace double-entry core

A multi-tenant, append-only ledger with:
- Exact cent-level revenue splits
- Idempotent, atomic transaction recording
- Accounting period locks
- Bank reconciliation matching
- Hash-verified reconciliation snapshots
"""

__version__ = "0.1.0"
