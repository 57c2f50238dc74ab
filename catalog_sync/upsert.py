import logging
from enum import Enum

from django.core.exceptions import ValidationError
from django.db import DataError, IntegrityError, transaction
from django.utils import timezone

from .models import Collection, OrderLine, OrderSummary, Product
from .transformer import compute_hash, gid_tail

logger = logging.getLogger(__name__)

# A single record failing one of these is skipped; the batch goes on.
RECORD_ERRORS = (ValidationError, IntegrityError, DataError)

PRODUCT_SYNC_FIELDS = (
    'product_id', 'handle', 'name', 'description', 'price', 'compare_at_price',
    'categories', 'tags', 'structured_tags', 'brand', 'product_group', 'vendor',
    'product_type', 'collections', 'collection_handles', 'attributes', 'variants',
    'images', 'image_url', 'product_url', 'is_available', 'source_created_at',
    'source_updated_at',
)

# Fields owned by other subsystems (embedding service); sync leaves them alone.
PRODUCT_EXTERNAL_FIELDS = ('has_embedding', 'vector_id')

COLLECTION_SYNC_FIELDS = (
    'title', 'handle', 'description', 'description_html', 'image',
    'product_count', 'published_at', 'source_updated_at',
)


class RecordOutcome(str, Enum):
    CREATED = 'created'
    UPDATED = 'updated'
    UNCHANGED = 'unchanged'
    SKIPPED = 'skipped'


def _write(model, external_id: str, data: dict, fields: tuple, exclude=()) -> RecordOutcome:
    """
    Field-scoped replace of one record keyed by external id.

    Every field in `fields` is overwritten; anything else on the row is kept.
    Unchanged payloads (same content hash) are not written at all.
    """
    payload = {name: data[name] for name in fields}
    content_hash = compute_hash(payload)

    with transaction.atomic():
        stored_hash = (
            model.objects.filter(external_id=external_id)
            .values_list('content_hash', flat=True)
            .first()
        )
        if stored_hash == content_hash:
            return RecordOutcome.UNCHANGED

        model(external_id=external_id, **payload).clean_fields(exclude=list(exclude))
        _, created = model.objects.update_or_create(
            external_id=external_id,
            defaults={**payload, 'content_hash': content_hash},
        )
    return RecordOutcome.CREATED if created else RecordOutcome.UPDATED


def upsert_product(data: dict) -> RecordOutcome:
    return _write(Product, data['external_id'], data, PRODUCT_SYNC_FIELDS, exclude=PRODUCT_EXTERNAL_FIELDS)


def upsert_collection(data: dict) -> RecordOutcome:
    return _write(Collection, data['external_id'], data, COLLECTION_SYNC_FIELDS)


def upsert_order(data: dict) -> RecordOutcome:
    """Replace the lines and summary of one order."""
    order_id = data['order_id']
    product_ids = [line['product_id'] for line in data['lines']]

    with transaction.atomic():
        for line in data['lines']:
            OrderLine.objects.update_or_create(
                order_id=order_id,
                product_id=line['product_id'],
                defaults={
                    'order_name': data['order_name'],
                    'quantity': line['quantity'],
                    'source_created_at': data['source_created_at'],
                },
            )
        OrderLine.objects.filter(order_id=order_id).exclude(product_id__in=product_ids).delete()
        _, created = OrderSummary.objects.update_or_create(
            order_id=order_id,
            defaults={
                'order_name': data['order_name'],
                'total_quantity': data['total_quantity'],
                'source_created_at': data['source_created_at'],
            },
        )
    return RecordOutcome.CREATED if created else RecordOutcome.UPDATED


def mark_product_unavailable(product_id) -> bool:
    """Soft delete: flag the product unavailable and force the next sync to rewrite it."""
    updated = Product.objects.filter(product_id=gid_tail(product_id)).update(
        is_available=False,
        content_hash='',
        last_synced_at=timezone.now(),
    )
    if not updated:
        logger.warning("Product %s not found – nothing to mark unavailable.", product_id)
    return bool(updated)


def delete_product(product_id) -> bool:
    """Hard delete on an explicit upstream delete signal."""
    deleted, _ = Product.objects.filter(product_id=gid_tail(product_id)).delete()
    if deleted:
        logger.info("Product %s deleted.", product_id)
    return bool(deleted)


def remove_collection_handle(handle: str) -> int:
    """Prune a removed collection's handle from every product that lists it."""
    pruned = 0
    candidates = Product.objects.only('id', 'collection_handles').iterator()
    for product in candidates:
        handles = product.collection_handles or []
        if handle not in handles:
            continue
        Product.objects.filter(pk=product.pk).update(
            collection_handles=[h for h in handles if h != handle],
            content_hash='',
            last_synced_at=timezone.now(),
        )
        pruned += 1
    logger.info("Pruned collection handle %r from %d products.", handle, pruned)
    return pruned
