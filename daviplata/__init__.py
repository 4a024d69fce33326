"""
DaviPlata - Movement Ledger

A small income/expense ledger for a single organization. Users record
cash movements with photo receipts; administrators verify pending ones.

DESIGN PRINCIPLES:
1. Only the latest movement is editable, and only for a short window
2. Verification only moves forward (PENDING -> VERIFIED)
3. Notifications are best-effort and never block the ledger
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "DaviPlata Team"
