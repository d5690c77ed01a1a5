"""Scheduled fetch → merge → persist of repository index files."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from helm_conductor.config.settings import settings
from helm_conductor.core.chart_loader import ChartLoader
from helm_conductor.core.index_merger import merge_index, parse_index
from helm_conductor.core.store import ObjectStore, retry_on_conflict
from helm_conductor.errors import HelmConductorError, NotFoundError
from helm_conductor.models import ReconcileResult, SyncState, utcnow
from helm_conductor.models.repo import Repository, SyncEntry
from helm_conductor.models.snapshot import Snapshot
from helm_conductor.utils.encoding import decode_snapshot, encode_snapshot
from helm_conductor.utils.history import prepend_bounded, shorten

logger = logging.getLogger(__name__)

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def sync_backoff(failures: int) -> int:
    """Seconds to wait after ``failures`` consecutive failed syncs."""
    return min(settings.sync_backoff_step * max(failures, 1), settings.max_sync_backoff)


def sync_interval(period: int) -> int | None:
    """Seconds between successful syncs, or None when auto-sync is off."""
    if period <= 0:
        return None
    return max(period, settings.min_sync_period)


def _requested_before(requested_at: datetime | None, started: datetime) -> bool:
    """True when an on-demand request was made before the pass that started at ``started``.

    Request annotations only keep whole seconds, so both sides are compared at
    that granularity and a request within the start second is left pending.
    """
    if requested_at is None:
        return False
    return requested_at.replace(microsecond=0) < started.replace(microsecond=0)


def consecutive_sync_failures(history: list[SyncEntry]) -> int:
    count = 0
    for entry in history:
        if entry.state is not SyncState.FAILED:
            break
        count += 1
    return count


def next_sync_delay(repo: Repository, now: datetime) -> float | None:
    """Seconds until the repository should be synced again.

    0 means sync now, None means only an on-demand request will trigger the
    next pass. A pending on-demand request always wins over the schedule.
    """
    if repo.sync_requested:
        return 0.0
    history = repo.status.sync_state
    if not history:
        return 0.0

    last = history[0]
    if last.state is SyncState.FAILED:
        interval = sync_backoff(consecutive_sync_failures(history))
    else:
        interval = sync_interval(repo.sync_period)
        if interval is None:
            return None

    due = (last.sync_time or _EPOCH) + timedelta(seconds=interval)
    return max(0.0, (due - now).total_seconds())


class RepoIndexSyncer:
    """Reconciles one repository per call; safe to share between workers."""

    def __init__(
        self,
        store: ObjectStore,
        loader: ChartLoader | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.loader = loader or ChartLoader()
        self.clock = clock

    def reconcile(self, name: str) -> ReconcileResult:
        try:
            repo = self.store.get_repo(name)
        except NotFoundError:
            logger.debug("repository %s is gone, nothing to do", name)
            return ReconcileResult()
        except HelmConductorError as e:
            return ReconcileResult(error=e)

        started = self.clock()
        delay = next_sync_delay(repo, started)
        if delay is None:
            return ReconcileResult()
        if delay > 0:
            return ReconcileResult(requeue_after=delay)

        entry, snapshot, data = self._sync(repo)

        try:
            updated = retry_on_conflict(lambda: self._persist(name, entry, snapshot, data, started))
        except NotFoundError:
            return ReconcileResult()
        except HelmConductorError as e:
            logger.error("update status of repository %s failed: %s", name, e)
            return ReconcileResult(error=e)

        return ReconcileResult(requeue_after=next_sync_delay(updated, self.clock()))

    def _sync(self, repo: Repository) -> tuple[SyncEntry, Snapshot | None, str | None]:
        logger.info("sync repository %s from %s", repo.name, repo.url)
        try:
            raw = self.loader.load_index(repo.url, repo.credential)
            index = parse_index(raw)
            previous = decode_snapshot(repo.status.data)
            snapshot = merge_index(index, previous)
            data = encode_snapshot(snapshot)
        except HelmConductorError as e:
            logger.error("sync repository %s failed: %s", repo.name, e)
            message = shorten(str(e), settings.message_len)
            return SyncEntry(state=SyncState.FAILED, message=message, sync_time=self.clock()), None, None

        logger.info(
            "sync repository %s done, %d applications, %d versions",
            repo.name, snapshot.total_applications, snapshot.total_versions,
        )
        return SyncEntry(state=SyncState.SUCCESSFUL, sync_time=self.clock()), snapshot, data

    def _persist(
        self,
        name: str,
        entry: SyncEntry,
        snapshot: Snapshot | None,
        data: str | None,
        started: datetime,
    ) -> Repository:
        repo = self.store.get_repo(name)
        if snapshot is not None and data is not None:
            repo.status.data = data
            repo.status.total_applications = snapshot.total_applications
            repo.status.total_versions = snapshot.total_versions
        repo.status.sync_state = prepend_bounded(repo.status.sync_state, entry, settings.history_len)
        repo.status.last_update_time = entry.sync_time
        if _requested_before(repo.sync_requested_at, started):
            repo.sync_requested_at = None
        return self.store.update_repo(repo)
