"""Sync coordinator: one reconciliation pass between a content source and the store.

Each datasource moves through ``IDLE → SYNCING → {COMPLETED, FAILED} → IDLE``.
A keyed map of :class:`asyncio.Lock` guarantees at most one in-flight sync per
datasource while syncs for different datasources run independently.  A second
request for a busy datasource is rejected with :class:`SyncInProgressError`
rather than queued.

Per-record problems (invalid record, slug conflict, failed write) are
collected into the :class:`SyncReport`; only adapter failures and an
unreachable store abort the attempt, and neither advances the cursor.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from pagesync.models.sync import (
    RecordFailure,
    RecordOutcome,
    RemovalPolicy,
    SyncReport,
    SyncState,
)
from pagesync.services.errors import (
    AdapterError,
    ConflictError,
    StoreError,
    StoreUnavailableError,
    SyncInProgressError,
    ValidationError,
)
from pagesync.services.source import ContentSource
from pagesync.services.store import PageStore
from pagesync.services.transformer import transform

logger = logging.getLogger(__name__)


def _record_id(record: Mapping[str, Any]) -> Optional[str]:
    if not isinstance(record, Mapping):
        return None
    value = record.get("page_id") or record.get("id")
    if value is None:
        return None
    return str(value).strip() or None


class SyncCoordinator:
    def __init__(
        self,
        source: ContentSource,
        store: PageStore,
        removal_policy: RemovalPolicy = RemovalPolicy.KEEP,
    ):
        self.source = source
        self.store = store
        self.removal_policy = removal_policy
        self._locks: Dict[str, asyncio.Lock] = {}
        self._last_reports: Dict[str, SyncReport] = {}

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def state(self, datasource_id: str) -> SyncState:
        lock = self._locks.get(datasource_id)
        if lock is not None and lock.locked():
            return SyncState.SYNCING
        return SyncState.IDLE

    def last_report(self, datasource_id: str) -> Optional[SyncReport]:
        return self._last_reports.get(datasource_id)

    def _acquire_slot(self, datasource_id: str) -> asyncio.Lock:
        lock = self._locks.setdefault(datasource_id, asyncio.Lock())
        if lock.locked():
            logger.warning("Sync already in progress", extra={"datasource_id": datasource_id})
            raise SyncInProgressError(datasource_id)
        return lock

    def _release_slot(self, datasource_id: str, lock: asyncio.Lock) -> None:
        """Drop the lock of an idle datasource so the map only holds running syncs."""
        if self._locks.get(datasource_id) is lock and not lock.locked():
            del self._locks[datasource_id]

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def sync_datasource(
        self,
        datasource_id: str,
        sync_all: bool = False,
        since: Optional[str] = None,
    ) -> SyncReport:
        """Run one sync for *datasource_id*.

        Args:
            sync_all: ignore the stored cursor and fetch the full set.
            since:    explicit cursor, overrides the stored one.

        Raises:
            SyncInProgressError: a sync for the same datasource is running.
        """
        lock = self._acquire_slot(datasource_id)
        try:
            async with lock:
                report = await self._run(datasource_id, sync_all, since)
        finally:
            self._release_slot(datasource_id, lock)
        self._last_reports[datasource_id] = report
        return report

    async def sync_many(
        self,
        datasource_ids: Iterable[str],
        sync_all: bool = False,
        since: Optional[str] = None,
    ) -> List[SyncReport]:
        """Sync several datasources one after another; a busy one yields a failed report."""
        reports: List[SyncReport] = []
        for datasource_id in datasource_ids:
            try:
                reports.append(await self.sync_datasource(datasource_id, sync_all=sync_all, since=since))
            except SyncInProgressError as exc:
                reports.append(
                    SyncReport(
                        datasource_id=datasource_id,
                        status=SyncState.FAILED,
                        started_at=datetime.now(timezone.utc),
                        error=str(exc),
                    )
                )
        return reports

    async def sync_page(self, datasource_id: str, record: Mapping[str, Any]) -> SyncReport:
        """Ingest a single record (webhook path) under the datasource lock."""
        lock = self._acquire_slot(datasource_id)
        try:
            async with lock:
                report = await self._run_one(datasource_id, record)
        finally:
            self._release_slot(datasource_id, lock)
        self._last_reports[datasource_id] = report
        return report

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run_one(self, datasource_id: str, record: Mapping[str, Any]) -> SyncReport:
        started = time.monotonic()
        report = SyncReport(datasource_id=datasource_id, started_at=datetime.now(timezone.utc))
        try:
            await asyncio.to_thread(self._ingest, datasource_id, record, report)
        except StoreUnavailableError as exc:
            return self._fail(report, started, str(exc))
        report.status = SyncState.COMPLETED
        report.duration_ms = int((time.monotonic() - started) * 1000)
        return report

    async def _run(self, datasource_id: str, sync_all: bool, since: Optional[str]) -> SyncReport:
        started = time.monotonic()
        report = SyncReport(datasource_id=datasource_id, started_at=datetime.now(timezone.utc))
        logger.info("Sync started", extra={"datasource_id": datasource_id, "sync_all": sync_all})

        try:
            cursor = None if sync_all else (since or await asyncio.to_thread(self.store.get_cursor, datasource_id))
        except StoreError as exc:
            return self._fail(report, started, str(exc))
        report.incremental = cursor is not None

        try:
            result = await self.source.fetch(datasource_id, cursor)
        except AdapterError as exc:
            return self._fail(report, started, str(exc))

        try:
            seen: Set[str] = set()
            for record in result.records:
                record_id = _record_id(record)
                if record_id:
                    seen.add(record_id)
                await asyncio.to_thread(self._ingest, datasource_id, record, report)

            if self.removal_policy is RemovalPolicy.TOMBSTONE and not report.incremental:
                report.tombstoned = await asyncio.to_thread(self.store.unpublish_missing, datasource_id, seen)

            if result.next_cursor:
                await asyncio.to_thread(self.store.save_cursor, datasource_id, result.next_cursor)
                report.cursor = result.next_cursor
        except StoreError as exc:
            return self._fail(report, started, str(exc))

        report.status = SyncState.COMPLETED
        report.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Sync completed",
            extra={
                "datasource_id": datasource_id,
                "pages_created": report.created,
                "pages_updated": report.updated,
                "skipped_invalid": report.skipped_invalid,
                "conflicts": report.conflicts,
                "failed": report.failed,
                "tombstoned": report.tombstoned,
                "duration_ms": report.duration_ms,
            },
        )
        return report

    def _ingest(self, datasource_id: str, record: Mapping[str, Any], report: SyncReport) -> None:
        """Transform and upsert one record, recording the outcome on *report*.

        Runs in a worker thread. Only :class:`StoreUnavailableError` escapes.
        """
        try:
            page = transform(record, datasource_id)
            if page.datasource_id != datasource_id:
                raise ValidationError(
                    f"Record belongs to datasource '{page.datasource_id}', not '{datasource_id}'",
                    page.page_id,
                )
        except ValidationError as exc:
            logger.warning("Skipping invalid record: %s", exc, extra={"datasource_id": datasource_id})
            self._note_failure(report, exc.page_id or _record_id(record), RecordOutcome.SKIPPED_INVALID, exc)
            return

        try:
            result = self.store.upsert(page)
        except ConflictError as exc:
            logger.warning("Conflict for page %s: %s", page.page_id, exc)
            self._note_failure(report, page.page_id, RecordOutcome.CONFLICT, exc)
            return
        except StoreUnavailableError:
            raise
        except StoreError as exc:
            logger.error("Failed to store page %s: %s", page.page_id, exc)
            self._note_failure(report, page.page_id, RecordOutcome.FAILED, exc)
            return

        report.record(RecordOutcome.CREATED if result.created else RecordOutcome.UPDATED)

    @staticmethod
    def _note_failure(report: SyncReport, page_id: Optional[str], outcome: RecordOutcome, exc: Exception) -> None:
        report.record(outcome)
        report.failures.append(RecordFailure(page_id=page_id, outcome=outcome, reason=str(exc)))

    @staticmethod
    def _fail(report: SyncReport, started: float, message: str) -> SyncReport:
        report.status = SyncState.FAILED
        report.error = message
        report.duration_ms = int((time.monotonic() - started) * 1000)
        logger.error("Sync failed", extra={"datasource_id": report.datasource_id, "error": message})
        return report
