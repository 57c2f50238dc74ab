import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Callable, Optional

from django.conf import settings
from django.db import DatabaseError

from .batches import BatchResult
from .models import SyncJobState
from .shop_client import FetchError, Page
from .state import JobState, StateStore, StateStoreError

logger = logging.getLogger(__name__)

SKIPPED = 'skipped'


@dataclass
class RunResult:
    name: str
    status: str
    processed: int = 0
    total_processed: int = 0
    cursor: Optional[str] = None
    batches: int = 0
    records: BatchResult = field(default_factory=BatchResult)
    error: Optional[str] = None

    def as_dict(self) -> dict:
        return asdict(self)


class PullPipeline:
    """
    Sequential, resumable pagination for one named job.

    Each page goes through `process_batch` (transform, reconcile, upsert) and
    only then is the cursor persisted, so a crash replays at most the
    in-flight page. A fetch error stores the last good cursor with status
    `failed` and ends the run; the next trigger resumes from there with the
    same filter the cursor was issued for. A completed run records the start
    of the run that built that filter as `last_success_at`.
    """

    def __init__(
        self,
        name: str,
        fetch: Callable[[Optional[str], Optional[str]], Page],
        process_batch: Callable[[list], BatchResult],
        state_store: Optional[StateStore] = None,
        build_filter: Optional[Callable[[JobState], Optional[str]]] = None,
        page_delay: Optional[float] = None,
        sleep=time.sleep,
    ):
        self.name = name
        self.fetch = fetch
        self.process_batch = process_batch
        self.state_store = state_store or StateStore()
        self.build_filter = build_filter
        self.page_delay = settings.SYNC_PAGE_DELAY if page_delay is None else page_delay
        self.sleep = sleep

    def run(self, restart: bool = False) -> RunResult:
        run_id = self.state_store.acquire(self.name)
        if run_id is None:
            logger.info("Job %s is already running – skipping this trigger.", self.name)
            return RunResult(name=self.name, status=SKIPPED)

        try:
            return self._run(run_id, restart)
        finally:
            try:
                self.state_store.release(self.name, run_id)
            except StateStoreError as exc:
                logger.error("Could not release lock for job %s: %s", self.name, exc)

    def _run(self, run_id: str, restart: bool) -> RunResult:
        state = self.state_store.load(self.name)

        if state.cursor and not restart:
            cursor, filter_query = state.cursor, state.filter_query
            window_started_at = state.window_started_at or state.last_run_at
            logger.info(
                "Resuming job %s from cursor %s (%d already processed).",
                self.name, cursor, state.total_processed,
            )
        else:
            cursor = None
            filter_query = self.build_filter(state) if self.build_filter else None
            window_started_at = state.last_run_at
            logger.info("Starting job %s from the beginning (filter=%r).", self.name, filter_query)

        total = 0 if restart else state.total_processed
        result = RunResult(name=self.name, status=SyncJobState.IN_PROGRESS, total_processed=total, cursor=cursor)

        try:
            owned = self.state_store.save(
                self.name, run_id,
                cursor=cursor,
                filter_query=filter_query,
                window_started_at=window_started_at,
                total_processed=total,
            )
        except StateStoreError as exc:
            return self._abort(result, exc)
        if not owned:
            return self._abort(result, "lost the job lock")

        while True:
            try:
                page = self.fetch(cursor, filter_query)
                batch = self.process_batch(page.records)
            except (FetchError, DatabaseError) as exc:
                logger.error("Job %s stopped at cursor %s: %s", self.name, cursor, exc)
                return self._fail(run_id, result, exc)

            total += len(page.records)
            exhausted = not page.has_more or not page.next_cursor or page.next_cursor == cursor
            if page.has_more and exhausted:
                logger.warning(
                    "Job %s: upstream reported more pages without a new cursor – treating as done.",
                    self.name,
                )
            cursor = None if exhausted else page.next_cursor

            changes = {
                'cursor': cursor,
                'total_processed': total,
                'status': SyncJobState.COMPLETED if exhausted else SyncJobState.IN_PROGRESS,
            }
            if exhausted:
                changes.update(last_success_at=window_started_at, window_started_at=None, last_error=None)

            try:
                owned = self.state_store.save(self.name, run_id, **changes)
            except StateStoreError as exc:
                return self._abort(result, exc)
            if not owned:
                return self._abort(result, "lost the job lock")

            result.batches += 1
            result.processed += len(page.records)
            result.total_processed = total
            result.cursor = cursor
            result.records = result.records.merge(batch)
            logger.info("Job %s: processed %d records so far.", self.name, total)

            if exhausted:
                result.status = SyncJobState.COMPLETED
                logger.info(
                    "Job %s completed. Processed %d records this run, %d in total.",
                    self.name, result.processed, total,
                )
                return result

            self.sleep(self.page_delay)

    def _fail(self, run_id: str, result: RunResult, exc) -> RunResult:
        result.status = SyncJobState.FAILED
        result.error = str(exc)
        try:
            self.state_store.save(
                self.name, run_id,
                cursor=result.cursor,
                total_processed=result.total_processed,
                status=SyncJobState.FAILED,
                last_error=result.error,
            )
        except StateStoreError as store_exc:
            logger.error("Could not record failure of job %s: %s", self.name, store_exc)
        return result

    def _abort(self, result: RunResult, reason) -> RunResult:
        logger.error("Job %s aborted: %s", self.name, reason)
        result.status = SyncJobState.FAILED
        result.error = str(reason)
        return result
