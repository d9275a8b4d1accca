from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from app.errors import IOFailure
from app.locks import SessionLockRegistry
from app.logs import core_event
from app.metrics import (
    active_sessions,
    janitor_failures_total,
    janitor_sessions_removed_total,
    uploads_cancelled_total,
)
from app.storage import ChunkStore


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SweepReport:
    started_at: datetime
    finished_at: datetime | None = None
    scanned: int = 0
    removed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    manifest_rows_deleted: int = 0
    tombstones_purged: int = 0

    def as_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "scanned": self.scanned,
            "removed": list(self.removed),
            "failed": list(self.failed),
            "manifest_rows_deleted": self.manifest_rows_deleted,
            "tombstones_purged": self.tombstones_purged,
        }


class SessionJanitor:
    """Reclaims scratch storage of cancelled and abandoned sessions."""

    def __init__(self, store: ChunkStore, locks: SessionLockRegistry, max_age: timedelta) -> None:
        self.store = store
        self.locks = locks
        self.max_age = max_age

    def cancel(self, upload_id: str) -> bool:
        with self.locks.hold(upload_id):
            existed = self.store.remove_session(upload_id)
        uploads_cancelled_total.inc()
        return existed

    def sweep(self, max_age: timedelta | None = None, now: datetime | None = None) -> SweepReport:
        now = now or _utc_now()
        threshold = self.max_age if max_age is None else max_age
        report = SweepReport(started_at=now)

        report.tombstones_purged = self.store.purge_tombstones()
        sessions = self.store.list_sessions()
        report.scanned = len(sessions)
        for upload_id in sessions:
            try:
                created_at = self.store.session_created_at(upload_id)
                if created_at is None or now - created_at <= threshold:
                    continue
                with self.locks.hold(upload_id):
                    removed = self.store.remove_session(upload_id)
                if removed:
                    report.removed.append(upload_id)
                    janitor_sessions_removed_total.inc()
            except IOFailure as exc:
                # One stuck session must not stop the rest of the sweep.
                report.failed.append(upload_id)
                janitor_failures_total.inc()
                core_event(
                    {"event": "janitor_session_failed", "upload_id": upload_id, "detail": exc.detail},
                    level=logging.WARNING,
                )

        report.manifest_rows_deleted = self._drop_orphan_manifest_rows()
        active_sessions.set(report.scanned - len(report.removed))
        report.finished_at = _utc_now()
        return report

    def _drop_orphan_manifest_rows(self) -> int:
        manifest = self.store.manifest
        if manifest is None:
            return 0
        # Rows first: a row is only written after its directory exists.
        known = manifest.known_sessions()
        present = set(self.store.list_sessions())
        deleted = 0
        for upload_id in known:
            if upload_id not in present:
                deleted += manifest.forget(upload_id)
        return deleted


class JanitorScheduler:
    """Runs the janitor inside the hosting event loop: once at start, then every interval."""

    def __init__(self, janitor: SessionJanitor, interval_seconds: int) -> None:
        self.janitor = janitor
        self.interval_seconds = interval_seconds
        self.last_report: SweepReport | None = None
        self.runs = 0
        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def trigger(self) -> SweepReport:
        report = await asyncio.to_thread(self.janitor.sweep)
        self.last_report = report
        self.runs += 1
        core_event(
            {
                "event": "janitor_sweep",
                "scanned": report.scanned,
                "removed": len(report.removed),
                "failed": len(report.failed),
                "manifest_rows_deleted": report.manifest_rows_deleted,
                "tombstones_purged": report.tombstones_purged,
            }
        )
        return report

    async def _loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await self.trigger()
            except Exception as exc:
                core_event(
                    {"event": "janitor_error", "detail": str(exc), "error_class": "maintenance_error"},
                    level=logging.ERROR,
                )
            if self.interval_seconds <= 0:
                return
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

    def start(self) -> asyncio.Task:
        if self._task is not None and not self._task.done():
            return self._task
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(self._stop_event))
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        if self._stop_event is not None:
            self._stop_event.set()
        try:
            await self._task
        finally:
            self._task = None
            self._stop_event = None
