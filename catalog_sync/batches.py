import logging
from dataclasses import dataclass
from functools import partial
from typing import Callable, Optional

from django.conf import settings

from .reconciler import load_collection_handles, reconcile_collections
from .transformer import (
    TransformError,
    transform_collection,
    transform_order,
    transform_product,
    unique_by_id,
)
from .upsert import RECORD_ERRORS, RecordOutcome, upsert_collection, upsert_order, upsert_product

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0

    def add(self, outcome: RecordOutcome):
        field = outcome.value
        setattr(self, field, getattr(self, field) + 1)

    def merge(self, other: 'BatchResult') -> 'BatchResult':
        return BatchResult(
            created=self.created + other.created,
            updated=self.updated + other.updated,
            unchanged=self.unchanged + other.unchanged,
            skipped=self.skipped + other.skipped,
        )

    @property
    def stored(self) -> int:
        return self.created + self.updated + self.unchanged


def _process(records: list, transform: Callable, upsert: Callable, label: str,
             reconcile: Optional[Callable] = None) -> BatchResult:
    result = BatchResult()
    unique = unique_by_id(records)
    result.skipped += len(records) - len(unique)

    payloads = []
    for raw in unique:
        try:
            payloads.append(transform(raw))
        except TransformError as exc:
            logger.warning("Skipping %s – %s", label, exc)
            result.add(RecordOutcome.SKIPPED)

    if reconcile is not None and payloads:
        payloads = reconcile(payloads)

    for payload in payloads:
        try:
            outcome = upsert(payload)
        except RECORD_ERRORS as exc:
            logger.error("Failed to store %s %s: %s", label, _record_key(payload), exc)
            outcome = RecordOutcome.SKIPPED
        result.add(outcome)

    logger.info(
        "Stored %s batch: created=%d, updated=%d, unchanged=%d, skipped=%d.",
        label, result.created, result.updated, result.unchanged, result.skipped,
    )
    return result


def _record_key(payload: dict):
    return payload.get('external_id') or payload.get('order_id')


def _reconcile_with_fresh_map(products: list[dict]) -> list[dict]:
    return reconcile_collections(products, load_collection_handles())


def process_product_batch(records: list, storefront_url: Optional[str] = None) -> BatchResult:
    """Transform, reconcile collection handles and upsert one page of products."""
    if storefront_url is None:
        storefront_url = settings.SHOP_STOREFRONT_URL
    return _process(
        records,
        partial(transform_product, storefront_url=storefront_url),
        upsert_product,
        'product',
        reconcile=_reconcile_with_fresh_map,
    )


def process_collection_batch(records: list) -> BatchResult:
    return _process(records, transform_collection, upsert_collection, 'collection')


def process_order_batch(records: list) -> BatchResult:
    return _process(records, transform_order, upsert_order, 'order')
