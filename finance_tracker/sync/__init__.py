"""Shadow ledger synchronization package."""

from finance_tracker.sync.shadow_ledger import (
    ShadowLedgerSync,
    origin_type_for,
    snapshot_for,
)

__all__ = ["ShadowLedgerSync", "origin_type_for", "snapshot_for"]
