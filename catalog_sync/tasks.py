import logging
from typing import Optional

from celery import shared_task
from celery.signals import worker_ready
from django.conf import settings
from kombu.exceptions import OperationalError as BrokerError

from . import retention, upsert
from .jobs import JobCoordinator
from .transformer import gid_tail

logger = logging.getLogger(__name__)


@shared_task(bind=True, name='catalog_sync.run_sync_job')
def run_sync_job(self, name, restart=False):
    """
    Run one named sync job until its pagination is exhausted or it fails.

    Overlapping triggers for the same job return `skipped`; progress of a
    failed run is kept and picked up by the next trigger.
    """
    result = JobCoordinator().run(name, restart=restart)
    logger.info("Job %s finished with status %s.", name, result.status)
    return result.as_dict()


@shared_task(bind=True, name='catalog_sync.sync_pending_collections')
def sync_pending_collections(self):
    results = JobCoordinator().process_pending_collections()
    logger.info("Processed %d pending collections.", len(results))
    return {'collections': [result.as_dict() for result in results]}


@shared_task(bind=True, name='catalog_sync.resume_interrupted_jobs')
def resume_interrupted_jobs(self, live_hosts=None):
    results = JobCoordinator().resume_interrupted(live_hosts=live_hosts)
    return {'resumed': [result.as_dict() for result in results]}


@shared_task(bind=True, name='catalog_sync.enqueue_collection')
def enqueue_collection(self, payload):
    """Queue a created or updated collection for a product sync."""
    pending = JobCoordinator().enqueue_collection(payload)
    return {'collection_id': pending.collection_id, 'handle': pending.handle}


@shared_task(bind=True, name='catalog_sync.remove_collection')
def remove_collection(self, collection_id):
    return JobCoordinator().remove_collection(collection_id)


@shared_task(bind=True, name='catalog_sync.remove_product')
def remove_product(self, product_id, hard=False):
    """Soft delete (mark unavailable) by default; `hard` deletes the row."""
    if hard:
        removed = upsert.delete_product(product_id)
    else:
        removed = upsert.mark_product_unavailable(product_id)
    return {'product_id': gid_tail(product_id), 'hard': hard, 'removed': removed}


@shared_task(bind=True, name='catalog_sync.prune_old_orders')
def prune_old_orders(self):
    return retention.prune_old_orders()


@shared_task(bind=True, name='catalog_sync.prune_unavailable_products')
def prune_unavailable_products(self):
    return retention.prune_unavailable_products()


def live_worker_hosts(app) -> Optional[list[str]]:
    """Hosts of the workers answering a ping, or None when the broker cannot be reached."""
    try:
        replies = app.control.ping(timeout=settings.SYNC_WORKER_PING_TIMEOUT)
    except BrokerError as exc:
        logger.warning("Could not ping workers, only local locks will be reclaimed: %s", exc)
        return None
    return sorted({nodename.split('@', 1)[-1] for reply in replies for nodename in reply})


@worker_ready.connect
def resume_on_startup(sender=None, **kwargs):
    live_hosts = live_worker_hosts(sender.app) if sender is not None else None
    logger.info("Worker ready – scheduling recovery of interrupted sync jobs (live hosts: %s).", live_hosts)
    resume_interrupted_jobs.delay(live_hosts=live_hosts)
