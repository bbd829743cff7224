"""
Shadow Ledger Synchronization

Every investment and subscription is money leaving the user's pocket, so
each one gets a mirror entry in the transaction ledger: a "shadow"
transaction. This module keeps that mirror in step with its source across
create, update and delete.

FLOW (a two-step saga, there is no cross-collection transaction):
1. The caller writes the source record. That write is authoritative.
2. A SyncIntent describing the change is queued in the outbox.
3. The intent is applied to the Transaction collection.
4. The intent is marked applied, drifted or failed.

A shadow is located by its explicit origin link
(owner_id, origin_type, origin_id), never by comparing amounts and dates.
Failures never propagate to the caller: they are logged through the audit
logger and left in the outbox, where retry_pending() can pick them up and
drift_report() can count them.

CONCURRENCY: calls are request-scoped and NOT serialized. Two concurrent
edits of the same source each queue and apply their own intent; the last
writer wins and nothing detects the race. The Transaction collection is
also written by manual ledger CRUD with no locking between the two.
"""

from typing import Optional, Union
from uuid import UUID

import structlog

from finance_tracker.audit import AuditLogger
from finance_tracker.config import SyncSettings, get_settings
from finance_tracker.errors import SyncDriftError
from finance_tracker.models.audit import AuditEventType
from finance_tracker.models.records import (
    Investment,
    OriginType,
    ShadowSnapshot,
    Subscription,
    SyncAction,
    SyncIntent,
    SyncStatus,
    Transaction,
    TransactionDirection,
)
from finance_tracker.services.storage import RecordStorageInterface


SourceRecord = Union[Investment, Subscription]

logger = structlog.get_logger(__name__)


def origin_type_for(source: SourceRecord) -> OriginType:
    if isinstance(source, Investment):
        return OriginType.INVESTMENT
    if isinstance(source, Subscription):
        return OriginType.SUBSCRIPTION
    raise TypeError(f"No shadow ledger entry for {type(source).__name__}")


def snapshot_for(source: SourceRecord) -> ShadowSnapshot:
    """
    The fields a shadow entry mirrors.

    Investments are booked on their transaction date, subscriptions on
    their start date. A missing investment description falls back to the
    category.
    """
    if isinstance(source, Investment):
        return ShadowSnapshot(
            amount=source.amount,
            date=source.date,
            category=source.category.value,
            description=source.description or source.category.value,
        )
    return ShadowSnapshot(
        amount=source.amount,
        date=source.start_date,
        category=source.category,
        description=source.ledger_description,
    )


class ShadowLedgerSync:
    """
    Keeps one shadow transaction per investment/subscription.

    Takes its repositories by injection so it can run against Google
    Sheets in production and in-memory storage in tests.
    """

    def __init__(
        self,
        transactions: RecordStorageInterface[Transaction],
        outbox: RecordStorageInterface[SyncIntent],
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[SyncSettings] = None,
    ):
        self._transactions = transactions
        self._outbox = outbox
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().sync

    # -------------------------------------------------------------------------
    # Lifecycle hooks called by the record flows
    # -------------------------------------------------------------------------

    async def on_created(
        self,
        source: SourceRecord,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[SyncIntent]:
        """Mirror a newly created source record."""
        return await self._sync(
            source,
            SyncAction.CREATE,
            snapshot=snapshot_for(source),
            correlation_id=correlation_id,
        )

    async def on_updated(
        self,
        previous: SourceRecord,
        current: SourceRecord,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[SyncIntent]:
        """Carry an edit of a source record over to its shadow."""
        return await self._sync(
            current,
            SyncAction.UPDATE,
            snapshot=snapshot_for(current),
            previous=snapshot_for(previous),
            correlation_id=correlation_id,
        )

    async def on_deleted(
        self,
        source: SourceRecord,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[SyncIntent]:
        """Remove the shadow of a deleted source record. Safe to repeat."""
        return await self._sync(
            source,
            SyncAction.DELETE,
            snapshot=snapshot_for(source),
            correlation_id=correlation_id,
        )

    async def find_shadow(self, source: SourceRecord) -> Optional[Transaction]:
        """The shadow transaction linked to `source`, if any."""
        return await self._transactions.find_one(
            owner_id=source.owner_id,
            origin_type=origin_type_for(source),
            origin_id=source.id,
        )

    # -------------------------------------------------------------------------
    # Outbox
    # -------------------------------------------------------------------------

    async def _sync(
        self,
        source: SourceRecord,
        action: SyncAction,
        snapshot: ShadowSnapshot,
        previous: Optional[ShadowSnapshot] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[SyncIntent]:
        if not self._settings.shadow_sync_enabled:
            return None

        intent = SyncIntent(
            owner_id=source.owner_id,
            origin_type=origin_type_for(source),
            origin_id=source.id,
            action=action,
            snapshot=snapshot,
            previous=previous,
        )

        queued = True
        try:
            await self._outbox.insert(intent)
        except Exception as e:
            # Without an outbox entry this intent cannot be retried later,
            # but applying it now is still worth trying.
            queued = False
            logger.error(
                "sync_intent_not_queued",
                intent_id=str(intent.id),
                action=action.value,
                error=str(e),
            )
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type="sync_intent_not_queued",
                    error_message=str(e),
                    details={
                        "intent_id": str(intent.id),
                        "origin_type": intent.origin_type.value,
                        "origin_id": str(intent.origin_id),
                        "action": action.value,
                    },
                    correlation_id=correlation_id,
                )

        return await self.apply(intent, queued=queued, correlation_id=correlation_id)

    async def apply(
        self,
        intent: SyncIntent,
        queued: bool = True,
        correlation_id: Optional[UUID] = None,
    ) -> SyncIntent:
        """
        Apply one intent to the ledger and record the outcome.

        Never raises. Returns the intent with its new status.
        """
        attempts = intent.attempts + 1
        error: Optional[str] = None

        try:
            if intent.action == SyncAction.CREATE:
                await self._apply_create(intent, correlation_id)
            elif intent.action == SyncAction.UPDATE:
                await self._apply_update(intent, correlation_id)
            else:
                await self._apply_delete(intent, correlation_id)
            status = SyncStatus.APPLIED
        except SyncDriftError as e:
            status = SyncStatus.DRIFTED
            error = str(e)
            if self._audit_logger:
                await self._audit_logger.log_sync_drift(
                    intent_id=intent.id,
                    owner_id=intent.owner_id,
                    origin_type=intent.origin_type.value,
                    origin_id=intent.origin_id,
                    action=intent.action.value,
                    reason=error,
                    correlation_id=correlation_id,
                )
        except Exception as e:
            status = SyncStatus.FAILED
            error = str(e)
            if self._audit_logger:
                await self._audit_logger.log_sync_failed(
                    intent_id=intent.id,
                    owner_id=intent.owner_id,
                    action=intent.action.value,
                    attempts=attempts,
                    error_message=error,
                    correlation_id=correlation_id,
                )

        return await self._record_outcome(intent, status, attempts, error, queued)

    async def _record_outcome(
        self,
        intent: SyncIntent,
        status: SyncStatus,
        attempts: int,
        error: Optional[str],
        queued: bool,
    ) -> SyncIntent:
        changes = {"status": status, "attempts": attempts, "last_error": error}
        if queued:
            try:
                updated = await self._outbox.find_one_and_update({"id": intent.id}, changes)
                if updated is not None:
                    return updated
            except Exception as e:
                logger.error(
                    "sync_intent_status_not_saved",
                    intent_id=str(intent.id),
                    status=status.value,
                    error=str(e),
                )
        return intent.model_copy(update=changes)

    # -------------------------------------------------------------------------
    # Applying intents
    # -------------------------------------------------------------------------

    async def _apply_create(
        self,
        intent: SyncIntent,
        correlation_id: Optional[UUID],
    ) -> None:
        snapshot = intent.snapshot
        existing = await self._find_linked(intent)
        if existing is not None:
            # A retried create must not produce a second shadow.
            await self._transactions.find_one_and_update(
                {"id": existing.id},
                self._mirror_changes(snapshot),
            )
            await self._log_shadow(AuditEventType.SHADOW_UPDATED, existing.id, intent, correlation_id)
            return

        shadow = Transaction(
            owner_id=intent.owner_id,
            category=snapshot.category,
            description=snapshot.description,
            amount=snapshot.amount,
            direction=TransactionDirection.EXPENSE,
            date=snapshot.date,
            origin_type=intent.origin_type,
            origin_id=intent.origin_id,
        )
        await self._transactions.insert(shadow)
        await self._log_shadow(AuditEventType.SHADOW_CREATED, shadow.id, intent, correlation_id)

    async def _apply_update(
        self,
        intent: SyncIntent,
        correlation_id: Optional[UUID],
    ) -> None:
        shadow, adopted = await self._find_shadow_for(intent, intent.previous)
        if shadow is None:
            raise SyncDriftError(
                f"No shadow transaction to update for {intent.origin_type.value} {intent.origin_id}",
                origin_type=intent.origin_type.value,
                origin_id=intent.origin_id,
            )

        changes = self._mirror_changes(intent.snapshot)
        if adopted:
            changes.update(origin_type=intent.origin_type, origin_id=intent.origin_id)

        updated = await self._transactions.find_one_and_update({"id": shadow.id}, changes)
        if updated is None:
            raise SyncDriftError(
                f"Shadow transaction {shadow.id} disappeared during update",
                origin_type=intent.origin_type.value,
                origin_id=intent.origin_id,
            )
        event_type = AuditEventType.SHADOW_ADOPTED if adopted else AuditEventType.SHADOW_UPDATED
        await self._log_shadow(event_type, shadow.id, intent, correlation_id)

    async def _apply_delete(
        self,
        intent: SyncIntent,
        correlation_id: Optional[UUID],
    ) -> None:
        shadow, _ = await self._find_shadow_for(intent, intent.snapshot)
        if shadow is None:
            raise SyncDriftError(
                f"No shadow transaction to delete for {intent.origin_type.value} {intent.origin_id}",
                origin_type=intent.origin_type.value,
                origin_id=intent.origin_id,
            )

        deleted = await self._transactions.find_one_and_delete(id=shadow.id)
        if deleted is None:
            raise SyncDriftError(
                f"Shadow transaction {shadow.id} disappeared during delete",
                origin_type=intent.origin_type.value,
                origin_id=intent.origin_id,
            )
        await self._log_shadow(AuditEventType.SHADOW_DELETED, shadow.id, intent, correlation_id)

    @staticmethod
    def _mirror_changes(snapshot: ShadowSnapshot) -> dict:
        return {
            "amount": snapshot.amount,
            "date": snapshot.date,
            "category": snapshot.category,
            "description": snapshot.description,
            "direction": TransactionDirection.EXPENSE,
        }

    async def _find_linked(self, intent: SyncIntent) -> Optional[Transaction]:
        return await self._transactions.find_one(
            owner_id=intent.owner_id,
            origin_type=intent.origin_type,
            origin_id=intent.origin_id,
        )

    async def _find_shadow_for(
        self,
        intent: SyncIntent,
        last_known: Optional[ShadowSnapshot],
    ) -> tuple[Optional[Transaction], bool]:
        """
        Locate the shadow for an intent.

        Returns (transaction, adopted). `adopted` is True when the entry was
        found by legacy value matching and still needs its origin link.
        """
        linked = await self._find_linked(intent)
        if linked is not None:
            return linked, False

        if not self._settings.legacy_value_matching or last_known is None:
            return None, False

        # Pre-link data: match the way entries used to be matched. A user
        # entry with identical owner/amount/date/category is
        # indistinguishable from the shadow here.
        legacy = await self._transactions.find_one(
            owner_id=intent.owner_id,
            origin_type=OriginType.MANUAL,
            amount=last_known.amount,
            date=last_known.date,
            direction=TransactionDirection.EXPENSE,
            category=last_known.category,
        )
        return legacy, legacy is not None

    async def _log_shadow(
        self,
        event_type: AuditEventType,
        transaction_id: UUID,
        intent: SyncIntent,
        correlation_id: Optional[UUID],
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_shadow_event(
                event_type=event_type,
                transaction_id=transaction_id,
                owner_id=intent.owner_id,
                origin_type=intent.origin_type.value,
                origin_id=intent.origin_id,
                correlation_id=correlation_id,
            )

    # -------------------------------------------------------------------------
    # Retry and observability
    # -------------------------------------------------------------------------

    async def _resolve_for_retry(self, intent: SyncIntent) -> Optional[SyncIntent]:
        """
        Bring a stale intent up to date before replaying it.

        Returns None when a newer applied intent, or any newer delete, for
        the same origin makes it obsolete; replaying it would roll the
        shadow back. Otherwise returns the intent carrying the newest known
        snapshot of the source.
        """
        if intent.action == SyncAction.DELETE:
            return intent
        history = await self._outbox.find(
            owner_id=intent.owner_id,
            origin_id=intent.origin_id,
        )
        newer = sorted(
            (other for other in history if other.created_at > intent.created_at),
            key=lambda other: other.created_at,
        )
        if any(
            other.status == SyncStatus.APPLIED or other.action == SyncAction.DELETE
            for other in newer
        ):
            return None
        if newer and newer[-1].snapshot is not None:
            return intent.model_copy(update={"snapshot": newer[-1].snapshot})
        return intent

    async def retry_pending(
        self,
        owner_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Re-apply pending and failed intents, oldest first.

        Intents that have used up `max_sync_attempts` are left alone.

        Returns:
            Number of intents applied successfully
        """
        filters = {"owner_id": owner_id} if owner_id else {}
        candidates = (
            await self._outbox.find(status=SyncStatus.PENDING, **filters)
            + await self._outbox.find(status=SyncStatus.FAILED, **filters)
        )
        candidates.sort(key=lambda i: i.created_at)

        applied = 0
        for intent in candidates:
            if intent.attempts >= self._settings.max_sync_attempts:
                continue
            resolved = await self._resolve_for_retry(intent)
            if resolved is None:
                await self._record_outcome(
                    intent,
                    SyncStatus.SUPERSEDED,
                    intent.attempts,
                    "Superseded by a newer change to the same record",
                    queued=True,
                )
                continue
            result = await self.apply(resolved, correlation_id=correlation_id)
            if result.status == SyncStatus.APPLIED:
                applied += 1

        logger.info(
            "sync_retry_finished",
            owner_id=owner_id,
            candidates=len(candidates),
            applied=applied,
        )
        return applied

    async def drift_report(self, owner_id: Optional[str] = None) -> dict[str, int]:
        """
        Count outbox intents by status.

        Anything other than `applied` means the ledger may not mirror its
        sources: `pending`/`failed` are lag that retry_pending() can fix,
        `drifted` needs a person to look at it.
        """
        filters = {"owner_id": owner_id} if owner_id else {}
        intents = await self._outbox.find(**filters)
        report = {status.value: 0 for status in SyncStatus}
        for intent in intents:
            report[intent.status.value] += 1
        return report
