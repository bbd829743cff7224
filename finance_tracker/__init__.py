"""
Finance Tracker - Core Package

The derived-record synchronization and projection engine behind a
personal-finance tracker.

DESIGN PRINCIPLES:
1. Source records are authoritative, shadow ledger entries follow them
2. Shadow entries carry an explicit link to their origin
3. Sync failures are recorded and retryable, never raised to the user
4. Derived values are recomputed by explicit functions, not hooks
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Finance Tracker Team"
