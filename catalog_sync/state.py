import logging
import os
import socket
import time
import uuid
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timedelta
from typing import Iterable, Optional

import psutil
from django.conf import settings
from django.db import InterfaceError, OperationalError
from django.db.models import Q
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from .models import SyncJobState

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (OperationalError, InterfaceError)

TIMESTAMP_FIELDS = ('last_run_at', 'last_success_at', 'window_started_at')


class StateStoreError(RuntimeError):
    """A job state write kept failing after every retry."""


def lock_owner() -> str:
    return f'{socket.gethostname()}:{os.getpid()}'


def parse_owner(run_id: Optional[str]) -> tuple[Optional[str], Optional[int]]:
    """Split a run id of the form `host:pid:token` into `(host, pid)`."""
    try:
        host, pid, _token = (run_id or '').rsplit(':', 2)
        return host, int(pid)
    except ValueError:
        return None, None


def owner_is_dead(run_id: Optional[str], live_hosts: Optional[Iterable[str]] = None) -> bool:
    """
    Whether the process that took the lock `run_id` is gone.

    A pid on this host is checked directly. A run on another host is only
    considered dead when `live_hosts` is known and does not include it.
    Run ids that name no owner are held by nobody.
    """
    host, pid = parse_owner(run_id)
    if host is None:
        return True
    if host == socket.gethostname():
        return not psutil.pid_exists(pid)
    return live_hosts is not None and host not in set(live_hosts)


@dataclass
class JobState:
    """Snapshot of one job's persisted progress."""

    name: str
    cursor: Optional[str] = None
    filter_query: Optional[str] = None
    last_run_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    window_started_at: Optional[datetime] = None
    total_processed: int = 0
    status: str = SyncJobState.IDLE
    last_error: Optional[str] = None
    is_running: bool = False

    @classmethod
    def from_record(cls, record: SyncJobState) -> 'JobState':
        return cls(**{f.name: getattr(record, f.name) for f in fields(cls)})

    @classmethod
    def from_dict(cls, data: dict) -> 'JobState':
        """Build from a serialized state; unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in data.items() if key in known}
        for key in TIMESTAMP_FIELDS:
            if isinstance(values.get(key), str):
                values[key] = parse_datetime(values[key])
        return cls(**values)

    def as_dict(self) -> dict:
        data = asdict(self)
        for key in TIMESTAMP_FIELDS:
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


class StateStore:
    """
    Durable per-job progress backed by SyncJobState rows.

    Each run takes a lock (`is_running` + a fresh `run_id`) with a single
    conditional UPDATE. Progress writes are filtered by that run id, so a run
    whose lock was taken over as stale can no longer overwrite its successor.
    Run ids start with the owning host and pid, so locks of dead processes can
    be freed at startup instead of after `SYNC_LOCK_STALE_SECONDS`.
    Writes are retried with exponential backoff on connection-level errors.
    """

    def __init__(self, max_retries=None, backoff=None, stale_after=None, sleep=time.sleep):
        self._max_retries = max(1, max_retries if max_retries is not None else settings.SYNC_STATE_MAX_RETRIES)
        self._backoff = backoff if backoff is not None else settings.SYNC_STATE_RETRY_BACKOFF
        self._stale_after = stale_after if stale_after is not None else settings.SYNC_LOCK_STALE_SECONDS
        self._sleep = sleep

    def load(self, name: str) -> JobState:
        record = SyncJobState.objects.filter(name=name).first()
        if record is None:
            return JobState(name=name)
        return JobState.from_record(record)

    def all(self) -> list[JobState]:
        return [JobState.from_record(record) for record in SyncJobState.objects.order_by('name')]

    def interrupted(self) -> list[str]:
        """Names of jobs left in progress by a run that is no longer alive."""
        return list(
            SyncJobState.objects
            .filter(self._lock_free(), status=SyncJobState.IN_PROGRESS)
            .order_by('name')
            .values_list('name', flat=True)
        )

    def reclaim(self, live_hosts: Optional[Iterable[str]] = None) -> list[str]:
        """
        Free the locks of in-progress jobs whose owning process has died,
        without waiting for their heartbeat to go stale. Returns the job names.
        """
        held = list(
            SyncJobState.objects
            .filter(is_running=True, status=SyncJobState.IN_PROGRESS)
            .order_by('name')
            .values_list('name', 'run_id')
        )
        reclaimed = []
        for name, run_id in held:
            if not owner_is_dead(run_id, live_hosts):
                continue
            freed = self._with_retry(
                lambda: SyncJobState.objects.filter(name=name, run_id=run_id, is_running=True).update(
                    is_running=False, updated_at=timezone.now(),
                ),
                f"reclaim lock for {name}",
            )
            if freed:
                logger.warning("Reclaimed lock of job %s from dead run %s.", name, run_id)
                reclaimed.append(name)
        return reclaimed

    def acquire(self, name: str) -> Optional[str]:
        """Take the run lock for `name`. Returns the run id, or None if a live run holds it."""
        run_id = f'{lock_owner()}:{uuid.uuid4().hex}'

        def _acquire():
            now = timezone.now()
            SyncJobState.objects.get_or_create(name=name)
            return SyncJobState.objects.filter(self._lock_free(), name=name).update(
                is_running=True,
                run_id=run_id,
                status=SyncJobState.IN_PROGRESS,
                last_run_at=now,
                updated_at=now,
            )

        if self._with_retry(_acquire, f"acquire lock for {name}"):
            return run_id
        return None

    def save(self, name: str, run_id: str, **changes) -> bool:
        """Persist progress for the run holding the lock. False if the lock was lost."""
        changes['updated_at'] = timezone.now()
        updated = self._with_retry(
            lambda: SyncJobState.objects.filter(name=name, run_id=run_id).update(**changes),
            f"save state for {name}",
        )
        if not updated:
            logger.warning("Run %s no longer owns job %s – state not saved.", run_id, name)
        return bool(updated)

    def release(self, name: str, run_id: str) -> None:
        self._with_retry(
            lambda: SyncJobState.objects.filter(name=name, run_id=run_id).update(
                is_running=False, updated_at=timezone.now(),
            ),
            f"release lock for {name}",
        )

    def purge(self, name: str) -> bool:
        deleted, _ = SyncJobState.objects.filter(name=name).delete()
        return bool(deleted)

    def _lock_free(self) -> Q:
        stale_before = timezone.now() - timedelta(seconds=self._stale_after)
        return Q(is_running=False) | Q(updated_at__lt=stale_before)

    def _with_retry(self, operation, description: str):
        delay = self._backoff
        for attempt in range(1, self._max_retries + 1):
            try:
                return operation()
            except RETRYABLE_ERRORS as exc:
                if attempt == self._max_retries:
                    raise StateStoreError(
                        f"Could not {description} after {attempt} attempts: {exc}"
                    ) from exc
                logger.warning(
                    "State store error while trying to %s (attempt %d/%d): %s. Retrying in %.1fs.",
                    description, attempt, self._max_retries, exc, delay,
                )
                self._sleep(delay)
                delay *= 2
