import logging

from .models import Collection

logger = logging.getLogger(__name__)


def load_collection_handles() -> dict:
    """Read the current collection title -> handle map from the store."""
    return dict(Collection.objects.values_list('title', 'handle'))


def resolve_handles(product: dict, title_to_handle: dict) -> list[str]:
    """Map a product's collection titles to handles, dropping unknown titles."""
    handles = []
    for title in product.get('collections') or []:
        handle = title_to_handle.get(title)
        if handle is None:
            logger.warning(
                "Collection %r not found for product %s – dropping reference.",
                title, product.get('external_id'),
            )
        elif handle not in handles:
            handles.append(handle)
    return handles


def reconcile_collections(products: list[dict], title_to_handle: dict) -> list[dict]:
    """
    Attach `collection_handles` to each transformed product.

    The map must be loaded once per batch so collections created since the
    previous batch become resolvable.
    """
    return [
        {**product, 'collection_handles': resolve_handles(product, title_to_handle)}
        for product in products
    ]
