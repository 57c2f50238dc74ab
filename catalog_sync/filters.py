"""
Typed product filters.

Request parameters become a list of clauses, each one of `Equality`,
`Range` or `Membership`. Text comparisons are case-insensitive and go
through `normalize_value` on both sides; a list-valued document field
matches when any of its items does.
"""
import re
from collections import Counter, defaultdict
from dataclasses import dataclass
from typing import Optional, Union

# request parameter -> document field (dotted for nested attributes)
FILTER_FIELDS = {
    'category': 'categories',
    'collections': 'collections',
    'tags': 'tags',
    'color': 'attributes.color',
    'size': 'attributes.size',
    'material': 'attributes.material',
    'season': 'attributes.season',
    'gender': 'attributes.gender',
    'style': 'attributes.style',
    'fabric': 'attributes.fabric',
    'work': 'attributes.work',
    'product_group': 'product_group',
    'product_type': 'product_type',
    'brand': 'brand',
}

PRICE_FIELD = 'price'
PRICE_PARAMS = ('min_price', 'max_price')

_WHITESPACE = re.compile(r'\s+')


class FilterError(ValueError):
    """A filter parameter could not be parsed."""


def normalize_value(value) -> str:
    """'  Light-Blue ' -> 'light blue'. No plural folding."""
    if value is None:
        return ''
    text = str(value).lower().replace('-', ' ')
    return _WHITESPACE.sub(' ', text).strip()


@dataclass(frozen=True)
class Equality:
    field: str
    value: str

    def matches(self, document: dict) -> bool:
        return self.value in _normalized_values(_lookup(document, self.field))


@dataclass(frozen=True)
class Membership:
    field: str
    values: frozenset

    def matches(self, document: dict) -> bool:
        return not self.values.isdisjoint(_normalized_values(_lookup(document, self.field)))


@dataclass(frozen=True)
class Range:
    field: str
    minimum: Optional[float] = None
    maximum: Optional[float] = None

    def matches(self, document: dict) -> bool:
        value = _lookup(document, self.field)
        if value is None:
            return False
        if self.minimum is not None and value < self.minimum:
            return False
        if self.maximum is not None and value > self.maximum:
            return False
        return True


Clause = Union[Equality, Membership, Range]


def _lookup(document: dict, path: str):
    value = document
    for part in path.split('.'):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _normalized_values(value) -> set:
    if value is None:
        return set()
    if isinstance(value, (list, tuple, set)):
        return {normalize_value(item) for item in value if item is not None}
    return {normalize_value(value)}


def _parse_price(params: dict, name: str) -> Optional[float]:
    raw = params.get(name)
    if raw in (None, ''):
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise FilterError(f"{name} must be a number, got {raw!r}")


def _split(raw) -> list[str]:
    items = raw if isinstance(raw, (list, tuple)) else str(raw).split(',')
    return [value for value in (normalize_value(item) for item in items) if value]


def build_filters(params: dict) -> list[Clause]:
    """
    Turn request parameters into clauses.

    A comma-separated value (or a list) becomes a `Membership`, a single one
    an `Equality`. `min_price`/`max_price` become one inclusive `Range`.
    Unknown and empty parameters are ignored.
    """
    clauses: list[Clause] = []
    for param, field in FILTER_FIELDS.items():
        raw = params.get(param)
        if raw in (None, ''):
            continue
        values = _split(raw)
        if not values:
            continue
        if len(values) == 1:
            clauses.append(Equality(field, values[0]))
        else:
            clauses.append(Membership(field, frozenset(values)))

    minimum = _parse_price(params, 'min_price')
    maximum = _parse_price(params, 'max_price')
    if minimum is not None or maximum is not None:
        clauses.append(Range(PRICE_FIELD, minimum, maximum))
    return clauses


def matches(document: dict, clauses: list[Clause]) -> bool:
    return all(clause.matches(document) for clause in clauses)


def filter_dimensions(params: dict) -> dict[str, str]:
    """Canonical `name -> value` pairs of the recognised filters, for cache keys."""
    dimensions = {}
    for param in FILTER_FIELDS:
        raw = params.get(param)
        if raw in (None, ''):
            continue
        values = sorted(set(_split(raw)))
        if values:
            dimensions[param] = ','.join(values)
    for param in PRICE_PARAMS:
        price = _parse_price(params, param)
        if price is not None:
            dimensions[param] = f'{price:g}'
    return dimensions


def field_values(document: dict, path: str) -> list:
    """Values at `path` with lists unwound and blank values dropped."""
    value = _lookup(document, path)
    items = value if isinstance(value, (list, tuple, set)) else [value]
    return [item for item in items if normalize_value(item)]


def facet_counts(documents, path: str) -> list[dict]:
    """
    Count documents per value at `path`.

    Spellings that normalize alike are merged and shown as their most frequent
    form. Most common first, then alphabetical.
    """
    spellings = defaultdict(Counter)
    for document in documents:
        for value in field_values(document, path):
            spellings[normalize_value(value)][str(value)] += 1
    facets = [
        {'value': counter.most_common(1)[0][0], 'count': sum(counter.values())}
        for counter in spellings.values()
    ]
    return sorted(facets, key=lambda facet: (-facet['count'], normalize_value(facet['value'])))
