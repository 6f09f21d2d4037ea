"""
Arrow Ledger - Source Package

A small multi-user ledger core for a household/business pair of
bookkeepers (taylor, dad) and an admin.

DESIGN PRINCIPLES:
1. Display order is explicit state (rank), never inferred
2. Fail early, fail visibly
3. No partial updates - a request applies completely or not at all
4. Every mutation is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Arrow Financial Team"
