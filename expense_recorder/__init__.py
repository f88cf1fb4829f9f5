"""
Expense Recorder - Source Package

Local-first receipt ledger for a single user: itemized receipts classified
against an editable taxonomy, persisted locally on every change and
reconciled with one remote document per user.

DESIGN PRINCIPLES:
1. Local state is written through on every committed mutation
2. Taxonomy edits never leave items pointing at missing names
3. Validation failures are returned, not raised
4. Remote echoes of our own pushes are never pushed back
"""

__version__ = "1.0.0"
__author__ = "Expense Recorder Team"
