"""
Journal Kernel - double-entry journal engine

A tenant-scoped journal lifecycle with:
- Balanced-entry validation and entry-type policies
- Race-free, date-sequenced entry references
- Approval workflow with explicit ANY_ONE / ALL_REQUIRED policies
- Reversal, adjustment and void entries that never mutate posted lines
- Append-only audit trail written in the business transaction
"""

__version__ = "0.1.0"
