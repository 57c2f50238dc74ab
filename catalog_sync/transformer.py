import hashlib
import json
import logging
from typing import Optional

from django.utils.dateparse import parse_datetime

logger = logging.getLogger(__name__)

BASE_ATTRIBUTES = ('color', 'size', 'material', 'season', 'gender', 'style', 'pattern', 'fit')

# Option names (lower-cased, substring match) that map onto an attribute.
OPTION_ATTRIBUTES = {
    'color': ('color', 'colour'),
    'size': ('size',),
}

TAG_SEPARATORS = (':', '-')


class TransformError(ValueError):
    """One upstream record cannot be mapped to the local schema."""


def gid_tail(gid) -> str:
    """'gid://shopify/Product/123' -> '123'."""
    return str(gid).rstrip('/').rsplit('/', 1)[-1]


def unique_by_id(records: list[dict]) -> list[dict]:
    """Deduplicate a page by upstream id (first occurrence wins)."""
    seen = {}
    for record in records:
        record_id = record.get('id') if isinstance(record, dict) else None
        if record_id is None:
            # Left in place so the transform step reports it.
            seen[id(record)] = record
        elif record_id in seen:
            logger.warning("Duplicate record %s – keeping first occurrence, skipping duplicate.", record_id)
        else:
            seen[record_id] = record
    return list(seen.values())


def _nodes(connection) -> list[dict]:
    if not connection:
        return []
    return [edge['node'] for edge in connection.get('edges') or []]


def _tag_list(tags) -> list[str]:
    if not tags:
        return []
    if isinstance(tags, str):
        return [tag.strip() for tag in tags.split(',') if tag.strip()]
    return [tag for tag in tags if isinstance(tag, str)]


def _parse_price(value) -> Optional[float]:
    """Convert a money string to float; empty or non-numeric values become None."""
    if value is None or value == '':
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning("Non-numeric price value %r – treating as missing.", value)
        return None


def _parse_int(value) -> int:
    """Convert a quantity to int; non-numeric values count as 0."""
    if value is None:
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Non-numeric quantity value %r – treating as 0.", value)
        return 0


def _parse_timestamp(value):
    if not value:
        return None
    try:
        parsed = parse_datetime(value)
    except (TypeError, ValueError):
        parsed = None
    if parsed is None:
        logger.warning("Unparseable timestamp %r – storing null.", value)
    return parsed


def parse_structured_tags(tags) -> dict:
    """
    Decompose `category:value` and `category-value` tags into a map.

    The colon form is tried first. Keys and values are lower-cased and the
    first tag seen for a category wins.
    """
    structured = {}
    for tag in _tag_list(tags):
        for separator in TAG_SEPARATORS:
            category, _, value = tag.partition(separator)
            if value.strip():
                break
        else:
            continue

        key = category.strip().lower()
        if key and key not in structured:
            structured[key] = value.strip().lower()
    return structured


def extract_attributes(raw: dict, structured_tags: dict) -> dict:
    """
    Build the attribute map for a product.

    Explicit option values override tag-derived attributes. The brand comes
    from the vendor and falls back to a `brand` tag.
    """
    attributes = dict.fromkeys(BASE_ATTRIBUTES)
    attributes.update(structured_tags)

    explicit = set()
    for option in raw.get('options') or []:
        name = (option.get('name') or '').lower()
        values = option.get('values') or []
        if not values:
            continue
        for attribute, keywords in OPTION_ATTRIBUTES.items():
            if attribute not in explicit and any(keyword in name for keyword in keywords):
                attributes[attribute] = values[0]
                explicit.add(attribute)
                break

    attributes['brand'] = raw.get('vendor') or structured_tags.get('brand') or ''
    return attributes


def _transform_variant(node: dict) -> dict:
    return {
        'variant_id': node['id'],
        'title': node.get('title') or '',
        'price': _parse_price(node.get('price')) or 0.0,
        'compare_at_price': _parse_price(node.get('compareAtPrice')),
        'sku': node.get('sku') or '',
        'inventory': _parse_int(node.get('inventoryQuantity')),
        'attributes': {
            option['name'].lower(): option.get('value')
            for option in node.get('selectedOptions') or []
        },
    }


def transform_product(raw: dict, storefront_url: str = '') -> dict:
    """
    Transform an upstream product node into the local Product payload.

    Raises TransformError if the record cannot be mapped.
    """
    if not isinstance(raw, dict) or not raw.get('id'):
        raise TransformError(f"Product record without an id: {raw!r:.200}")

    try:
        return _build_product(raw, storefront_url)
    except (KeyError, TypeError, AttributeError) as exc:
        raise TransformError(f"Malformed product {raw['id']}: {exc!r}") from exc


def _build_product(raw: dict, storefront_url: str) -> dict:
    tags = _tag_list(raw.get('tags'))
    structured_tags = parse_structured_tags(tags)
    variants = [_transform_variant(node) for node in _nodes(raw.get('variants'))]
    images = [
        {'url': node.get('url') or '', 'alt': node.get('altText') or ''}
        for node in _nodes(raw.get('images'))
    ]
    attributes = extract_attributes(raw, structured_tags)
    first_variant = variants[0] if variants else {}
    handle = raw.get('handle') or None
    product_type = raw.get('productType') or ''
    vendor = raw.get('vendor') or ''

    product_url = ''
    if storefront_url and handle:
        product_url = f"{storefront_url.rstrip('/')}/products/{handle}"

    return {
        'external_id': raw['id'],
        'product_id': gid_tail(raw['id']),
        'handle': handle,
        'name': raw.get('title') or '',
        'description': raw.get('description') or '',
        'price': first_variant.get('price', 0.0),
        'compare_at_price': first_variant.get('compare_at_price'),
        'categories': [product_type] if product_type else [],
        'tags': tags,
        'structured_tags': structured_tags,
        'brand': attributes['brand'],
        'product_group': structured_tags.get('collection', ''),
        'vendor': vendor,
        'product_type': product_type,
        'collections': [node['title'] for node in _nodes(raw.get('collections')) if node.get('title')],
        'collection_handles': [],
        'attributes': attributes,
        'variants': variants,
        'images': images,
        'image_url': images[0]['url'] if images else '',
        'product_url': product_url,
        'is_available': (raw.get('status') or '').upper() == 'ACTIVE',
        'source_created_at': _parse_timestamp(raw.get('createdAt')),
        'source_updated_at': _parse_timestamp(raw.get('updatedAt')),
    }


def transform_collection(raw: dict) -> dict:
    """Transform an upstream collection node into the local Collection payload."""
    if not isinstance(raw, dict) or not raw.get('id'):
        raise TransformError(f"Collection record without an id: {raw!r:.200}")
    if not raw.get('handle') or not raw.get('title'):
        raise TransformError(f"Collection {raw['id']} has no handle or title.")

    image = raw.get('image')
    if isinstance(image, dict):
        image = {
            'url': image.get('url') or '',
            'alt_text': image.get('altText') or '',
            'width': image.get('width'),
            'height': image.get('height'),
        }
    else:
        image = None

    products_count = raw.get('productsCount') or {}
    return {
        'external_id': raw['id'],
        'title': raw['title'],
        'handle': raw['handle'],
        'description': raw.get('description') or '',
        'description_html': raw.get('descriptionHtml') or '',
        'image': image,
        'product_count': _parse_int(products_count.get('count') if isinstance(products_count, dict) else None),
        'published_at': _parse_timestamp(raw.get('publishedAt')),
        'source_updated_at': _parse_timestamp(raw.get('updatedAt')),
    }


def transform_order(raw: dict) -> dict:
    """
    Transform an upstream order node into per-product order lines.

    Line items without a product (custom items, deleted products) are skipped;
    repeated products within one order are summed.
    """
    if not isinstance(raw, dict) or not raw.get('id'):
        raise TransformError(f"Order record without an id: {raw!r:.200}")

    try:
        order_id = int(gid_tail(raw['id']))
        quantities = {}
        for node in _nodes(raw.get('lineItems')):
            product = node.get('product')
            if not product or not product.get('id'):
                continue
            product_id = gid_tail(product['id'])
            quantities[product_id] = quantities.get(product_id, 0) + _parse_int(node.get('quantity'))
    except (KeyError, TypeError, AttributeError, ValueError) as exc:
        raise TransformError(f"Malformed order {raw['id']}: {exc!r}") from exc

    lines = [{'product_id': pid, 'quantity': qty} for pid, qty in quantities.items()]
    return {
        'order_id': order_id,
        'order_name': raw.get('name') or '',
        'source_created_at': _parse_timestamp(raw.get('createdAt')),
        'lines': lines,
        'total_quantity': sum(quantities.values()),
    }


def compute_hash(payload: dict) -> str:
    """Compute a stable SHA-256 hash of a payload dict for delta sync."""
    serialized = json.dumps(payload, sort_keys=True, ensure_ascii=False, default=str)
    return hashlib.sha256(serialized.encode('utf-8')).hexdigest()
