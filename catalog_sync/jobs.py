import logging
import time
from dataclasses import dataclass
from datetime import timedelta, timezone as dt_timezone
from typing import Callable, Optional

from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone

from .batches import process_collection_batch, process_order_batch, process_product_batch
from .models import Collection, CollectionSyncState, SyncJobState
from .pipeline import PullPipeline, RunResult
from .shop_client import ShopClient
from .state import JobState, StateStore, StateStoreError
from .transformer import gid_tail
from .upsert import remove_collection_handle

logger = logging.getLogger(__name__)

COLLECTION_JOB_PREFIX = 'collection_products:'
COLLECTION_GID = 'gid://shopify/Collection/{}'


@dataclass(frozen=True)
class JobSpec:
    name: str
    resource: str
    process_batch: Callable[[list], object]
    build_filter: Optional[Callable[[JobState], Optional[str]]] = None
    interval: Optional[float] = None
    page_delay: Optional[float] = None


# ---------------------------------------------------------------------------
# Filter predicates
# ---------------------------------------------------------------------------

def _upstream_timestamp(moment) -> str:
    return moment.astimezone(dt_timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def updated_since(operator: str = '>', quoted: bool = True) -> Callable[[JobState], str]:
    """
    Incremental window filter.

    Starts `SYNC_INCREMENTAL_OVERLAP` seconds before the last completed run so
    records touched while that run was paging are picked up again; a job that
    never completed looks back `SYNC_INCREMENTAL_LOOKBACK` seconds instead.
    """
    def build(state: JobState) -> str:
        if state.last_success_at is not None:
            since = state.last_success_at - timedelta(seconds=settings.SYNC_INCREMENTAL_OVERLAP)
        else:
            since = timezone.now() - timedelta(seconds=settings.SYNC_INCREMENTAL_LOOKBACK)
        stamp = _upstream_timestamp(since)
        if quoted:
            stamp = f"'{stamp}'"
        return f"updated_at:{operator}{stamp}"
    return build


def created_since_days(days: Optional[int] = None) -> Callable[[JobState], str]:
    def build(state: JobState) -> str:
        lookback = settings.SYNC_ORDER_LOOKBACK_DAYS if days is None else days
        since = timezone.now().astimezone(dt_timezone.utc).date() - timedelta(days=lookback)
        return f"created_at:>={since.isoformat()}"
    return build


def collection_filter(collection_id) -> Callable[[JobState], str]:
    return lambda state: f"collection_id:{collection_id}"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

def default_registry() -> dict[str, JobSpec]:
    intervals = settings.SYNC_JOB_INTERVALS
    specs = [
        JobSpec('products_full', 'products', process_product_batch),
        JobSpec('products_incremental', 'products', process_product_batch,
                build_filter=updated_since('>', quoted=True)),
        JobSpec('collections_full', 'collections', process_collection_batch),
        JobSpec('collections_incremental', 'collections', process_collection_batch,
                build_filter=updated_since('>=', quoted=False)),
        JobSpec('orders', 'orders', process_order_batch, build_filter=created_since_days()),
    ]
    return {
        spec.name: JobSpec(
            spec.name, spec.resource, spec.process_batch, spec.build_filter,
            interval=intervals.get(spec.name),
        )
        for spec in specs
    }


def collection_job(collection_id) -> JobSpec:
    collection_id = gid_tail(collection_id)
    return JobSpec(
        name=f'{COLLECTION_JOB_PREFIX}{collection_id}',
        resource='products',
        process_batch=process_product_batch,
        build_filter=collection_filter(collection_id),
        page_delay=settings.SYNC_COLLECTION_PAGE_DELAY,
    )


class JobCoordinator:
    """
    Owns the job registry and turns job names into pipeline runs.

    Runs of the same name exclude each other through the state store lock;
    different names are independent and can run side by side.
    """

    def __init__(self, registry=None, client=None, state_store=None, sleep=time.sleep):
        self.registry = registry if registry is not None else default_registry()
        self._client = client
        self.state_store = state_store or StateStore()
        self.sleep = sleep

    @property
    def client(self) -> ShopClient:
        if self._client is None:
            self._client = ShopClient()
        return self._client

    def spec_for(self, name: str) -> JobSpec:
        if name in self.registry:
            return self.registry[name]
        if name.startswith(COLLECTION_JOB_PREFIX):
            return collection_job(name[len(COLLECTION_JOB_PREFIX):])
        raise ValueError(f"Unknown sync job: {name}")

    def pipeline_for(self, spec: JobSpec) -> PullPipeline:
        return PullPipeline(
            spec.name,
            fetch=self.client.fetcher(spec.resource),
            process_batch=spec.process_batch,
            state_store=self.state_store,
            build_filter=spec.build_filter,
            page_delay=spec.page_delay,
            sleep=self.sleep,
        )

    def run(self, name: str, restart: bool = False) -> RunResult:
        spec = self.spec_for(name)
        logger.info("Triggering job %s%s.", name, " (restart)" if restart else "")
        return self.pipeline_for(spec).run(restart=restart)

    def run_collection(self, collection_id, restart: bool = False) -> RunResult:
        return self.pipeline_for(collection_job(collection_id)).run(restart=restart)

    def schedule(self) -> dict[str, float]:
        return {name: spec.interval for name, spec in self.registry.items() if spec.interval}

    # -----------------------------------------------------------------------
    # Pending collections
    # -----------------------------------------------------------------------

    def enqueue_collection(self, payload: dict) -> CollectionSyncState:
        """Queue a collection (e.g. from a create/update webhook) for a product sync."""
        pending, created = CollectionSyncState.objects.update_or_create(
            collection_id=gid_tail(payload['id']),
            defaults={
                'handle': payload['handle'],
                'title': payload['title'],
                'body_html': payload.get('body_html') or '',
            },
        )
        logger.info("%s collection %s for product sync.", "Queued" if created else "Re-queued", pending.handle)
        return pending

    def process_pending_collections(self) -> list[RunResult]:
        results = []
        for pending in CollectionSyncState.objects.order_by('queued_at', 'pk'):
            logger.info("Processing collection: %s (%s)", pending.title, pending.collection_id)
            try:
                with transaction.atomic():
                    self._ensure_collection(pending)
                result = self.run_collection(pending.collection_id)
            except (DatabaseError, StateStoreError) as exc:
                logger.error("Failed to sync products for collection %s: %s", pending.collection_id, exc)
                continue

            results.append(result)
            if result.status == SyncJobState.COMPLETED:
                pending.delete()
                logger.info("No more products to process for collection %s – dequeued.", pending.collection_id)
        return results

    def _ensure_collection(self, pending: CollectionSyncState):
        if Collection.objects.filter(handle=pending.handle).exists():
            return
        Collection.objects.create(
            external_id=COLLECTION_GID.format(pending.collection_id),
            handle=pending.handle,
            title=pending.title,
            description_html=pending.body_html,
        )
        logger.info("Added new collection: %s", pending.handle)

    def remove_collection(self, collection_id) -> dict:
        """Drop a collection deleted upstream together with everything derived from it."""
        collection_id = gid_tail(collection_id)
        collection = Collection.objects.filter(external_id=COLLECTION_GID.format(collection_id)).first()
        pending = CollectionSyncState.objects.filter(collection_id=collection_id).first()
        handle = collection.handle if collection else (pending.handle if pending else None)

        pruned = 0
        if collection is not None:
            collection.delete()
        if handle:
            pruned = remove_collection_handle(handle)
        if pending is not None:
            pending.delete()
        purged = self.state_store.purge(collection_job(collection_id).name)

        logger.info("Removed collection %s (handle=%s).", collection_id, handle)
        return {
            'collection_id': collection_id,
            'deleted': collection is not None,
            'products_pruned': pruned,
            'state_purged': purged,
        }

    # -----------------------------------------------------------------------
    # Startup recovery
    # -----------------------------------------------------------------------

    def resume_interrupted(self, live_hosts=None) -> list[RunResult]:
        """
        Resume jobs left in progress. Locks held by dead processes are freed
        first, see `StateStore.reclaim`.
        """
        self.state_store.reclaim(live_hosts)
        names = self.state_store.interrupted()
        if not names:
            logger.info("No interrupted jobs to resume.")
        results = []
        for name in names:
            logger.info("Resuming interrupted job %s.", name)
            try:
                results.append(self.run(name))
            except ValueError as exc:
                logger.error("Cannot resume %s: %s", name, exc)
        return results
