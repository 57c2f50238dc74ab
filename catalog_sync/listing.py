import logging
import math
from datetime import datetime, timezone as dt_timezone
from functools import lru_cache
from typing import Optional

from django.conf import settings
from django.db.models import Sum

from .cache import BoundedCache, hierarchical_keys
from .filters import (
    FILTER_FIELDS,
    FilterError,
    build_filters,
    facet_counts,
    filter_dimensions,
    matches,
    normalize_value,
)
from .models import OrderLine, Product
from .query_tracker import DjangoCacheCounterStore, QueryPatternTracker

logger = logging.getLogger(__name__)

BASE_KEY = 'products'
FACETS_KEY = 'facets'
BEST_SELLING = 'best_selling'
DEFAULT_SORT = 'date_new_to_old'
DEFAULT_LIMIT = 20
MAX_LIMIT = 100

DOCUMENT_FIELDS = (
    'product_id', 'handle', 'name', 'price', 'compare_at_price', 'categories', 'tags',
    'brand', 'product_group', 'product_type', 'collections', 'collection_handles',
    'attributes', 'image_url', 'product_url', 'source_created_at',
)

_EPOCH = datetime(1970, 1, 1, tzinfo=dt_timezone.utc)

# sort name -> (key function, descending)
SORT_ORDERS = {
    'price_asc': (lambda doc: doc['price'] or 0, False),
    'price_desc': (lambda doc: doc['price'] or 0, True),
    'alphabetical_asc': (lambda doc: (doc['name'] or '').lower(), False),
    'alphabetical_desc': (lambda doc: (doc['name'] or '').lower(), True),
    'date_old_to_new': (lambda doc: doc['source_created_at'] or _EPOCH, False),
    'date_new_to_old': (lambda doc: doc['source_created_at'] or _EPOCH, True),
    BEST_SELLING: (lambda doc: doc.get('total_sale_qty', 0), True),
}


def sort_products(products: list[dict], sort: str) -> list[dict]:
    try:
        key, descending = SORT_ORDERS[sort]
    except KeyError:
        raise FilterError(f"Unknown sort: {sort}")
    return sorted(products, key=key, reverse=descending)


def sales_by_product() -> dict[str, int]:
    """Units sold per product id, summed over the synced order lines."""
    rows = OrderLine.objects.order_by().values('product_id').annotate(total=Sum('quantity'))
    return {row['product_id']: row['total'] or 0 for row in rows}


def with_sales(products: list[dict]) -> list[dict]:
    sales = sales_by_product()
    return [dict(doc, total_sale_qty=sales.get(doc['product_id'], 0)) for doc in products]


def _positive_int(params: dict, name: str, default: int) -> int:
    raw = params.get(name)
    if raw in (None, ''):
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise FilterError(f"{name} must be an integer, got {raw!r}")
    if value < 1:
        raise FilterError(f"{name} must be at least 1, got {value}")
    return value


class ProductListing:
    """
    Filtered, sorted and paginated product lists served through the cache.

    The cache holds the full filtered list per filter combination (sorting
    and paging are applied per request). On a miss at the exact key a broader
    cached list is narrowed with the same clauses, unless the combination is
    hot, in which case its exact list is computed and cached. `best_selling`
    ranks by units sold across the synced order lines.
    """

    def __init__(self, cache: Optional[BoundedCache] = None, tracker: Optional[QueryPatternTracker] = None):
        self.cache = cache if cache is not None else BoundedCache(
            max_size=settings.PRODUCT_CACHE_MAX_SIZE,
            ttl=settings.PRODUCT_CACHE_TTL,
        )
        self.tracker = tracker if tracker is not None else QueryPatternTracker()

    def list_products(self, params: dict) -> dict:
        clauses = build_filters(params)
        dimensions = filter_dimensions(params)
        sort = params.get('sort') or DEFAULT_SORT
        page = _positive_int(params, 'page', 1)
        limit = min(_positive_int(params, 'limit', DEFAULT_LIMIT), MAX_LIMIT)

        self.tracker.track(dimensions)
        exact_key = hierarchical_keys(BASE_KEY, dimensions)[0]
        key, cached = self.cache.resolve_hierarchical(BASE_KEY, dimensions)

        if key == exact_key:
            products, source = cached, 'cache'
        elif key is not None and not self.tracker.is_hot(dimensions):
            products = [doc for doc in cached if matches(doc, clauses)]
            source = 'fallback'
            logger.debug("Served %s from broader cache entry %s.", exact_key, key)
        else:
            products, source = self._load(clauses), 'store'
            self.cache.set_hierarchical(BASE_KEY, dimensions, products)

        if sort == BEST_SELLING:
            products = with_sales(products)
        ordered = sort_products(products, sort)
        total = len(ordered)
        start = (page - 1) * limit
        return {
            'products': ordered[start:start + limit],
            'pagination': {
                'total': total,
                'page': page,
                'limit': limit,
                'pages': math.ceil(total / limit),
            },
            'filters': dimensions,
            'sort': sort,
            'source': source,
        }

    def facets(self, params: dict) -> dict:
        """
        Filter options for the products matching `params`: counts per category,
        collection, tag, attribute, group, type and brand plus the price range.

        Brands are counted with every filter except the brand one applied, so
        the other brands stay selectable; the requested ones are `selected`.
        """
        clauses = build_filters(params)
        dimensions = filter_dimensions(params)
        key = hierarchical_keys(FACETS_KEY, dimensions)[0]
        cached = self.cache.get(key)
        if cached is not None:
            return dict(cached, source='cache')

        brand_field = FILTER_FIELDS['brand']
        brand_pool = self._load([clause for clause in clauses if clause.field != brand_field])
        matched = [doc for doc in brand_pool if matches(doc, clauses)]
        selected = set(dimensions['brand'].split(',')) if 'brand' in dimensions else set()
        prices = [doc['price'] for doc in matched if doc['price'] is not None]

        result = {
            'total': len(matched),
            'filters': dimensions,
            'categories': facet_counts(matched, FILTER_FIELDS['category']),
            'collections': facet_counts(matched, FILTER_FIELDS['collections']),
            'tags': facet_counts(matched, FILTER_FIELDS['tags']),
            'attributes': {
                name: facet_counts(matched, path)
                for name, path in FILTER_FIELDS.items()
                if path.startswith('attributes.')
            },
            'product_groups': facet_counts(matched, FILTER_FIELDS['product_group']),
            'product_types': facet_counts(matched, FILTER_FIELDS['product_type']),
            'brands': [
                dict(facet, selected=normalize_value(facet['value']) in selected)
                for facet in facet_counts(brand_pool, brand_field)
            ],
            'price_range': {
                'min': math.floor(min(prices)) if prices else None,
                'max': math.ceil(max(prices)) if prices else None,
                'applied_min': float(dimensions['min_price']) if 'min_price' in dimensions else None,
                'applied_max': float(dimensions['max_price']) if 'max_price' in dimensions else None,
            },
        }
        self.cache.set(key, result)
        return dict(result, source='store')

    def _load(self, clauses) -> list[dict]:
        documents = Product.objects.filter(is_available=True).values(*DOCUMENT_FIELDS)
        return [doc for doc in documents if matches(doc, clauses)]

    def invalidate(self) -> None:
        self.cache.clear()


@lru_cache(maxsize=None)
def get_product_listing() -> ProductListing:
    """Process-wide listing with a swept cache and counters shared through the Django cache."""
    cache = BoundedCache(
        max_size=settings.PRODUCT_CACHE_MAX_SIZE,
        ttl=settings.PRODUCT_CACHE_TTL,
        sweep_interval=settings.PRODUCT_CACHE_SWEEP_INTERVAL,
    )
    return ProductListing(cache=cache, tracker=QueryPatternTracker(DjangoCacheCounterStore()))
