import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('catalog_sync')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()


@app.on_after_finalize.connect
def setup_periodic_tasks(sender, **kwargs):
    """Register one beat entry per sync job, each on its own interval."""
    from django.conf import settings

    for name, interval in settings.SYNC_JOB_INTERVALS.items():
        sender.add_periodic_task(
            float(interval),
            sender.signature('catalog_sync.run_sync_job', args=(name,)),
            name=f'sync:{name}',
        )
    sender.add_periodic_task(
        float(settings.SYNC_PENDING_COLLECTIONS_INTERVAL),
        sender.signature('catalog_sync.sync_pending_collections'),
        name='sync:pending_collections',
    )
    sender.add_periodic_task(
        float(settings.RETENTION_SWEEP_INTERVAL),
        sender.signature('catalog_sync.prune_old_orders'),
        name='retention:orders',
    )
    sender.add_periodic_task(
        float(settings.PRODUCT_CLEANUP_INTERVAL),
        sender.signature('catalog_sync.prune_unavailable_products'),
        name='retention:unavailable_products',
    )
