import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from threading import Lock
from typing import Optional

import requests
from django.conf import settings

from .queries import COLLECTIONS_QUERY, ORDERS_QUERY, PRODUCTS_QUERY

logger = logging.getLogger(__name__)


class FetchError(RuntimeError):
    """A page could not be fetched from the shop; the current run must stop."""


@dataclass
class Page:
    records: list = field(default_factory=list)
    next_cursor: Optional[str] = None
    has_more: bool = False


class RateLimiter:
    """
    Client-side budget of `rate` requests per `period` seconds, shared by every
    thread using the same client. A window opens with its first request; once
    its budget is spent, callers block until it closes.
    """

    def __init__(self, rate: int, period: float = 1.0):
        if rate < 1:
            raise ValueError("rate must be at least 1")
        self.rate = rate
        self.period = period
        self._opened_at = None
        self._used = 0
        self._lock = Lock()

    def acquire(self) -> float:
        """Take one request slot. Returns the seconds spent waiting for it."""
        with self._lock:
            now = time.monotonic()
            waited = 0.0
            if self._opened_at is not None and self._used >= self.rate:
                waited = self.period - (now - self._opened_at)
                if waited > 0:
                    time.sleep(waited)
                else:
                    waited = 0.0
                self._opened_at = None
            if self._opened_at is None or time.monotonic() - self._opened_at >= self.period:
                self._opened_at = time.monotonic()
                self._used = 0
            self._used += 1
            return waited


def retry_after_seconds(response: requests.Response) -> Optional[float]:
    """Seconds requested by a `Retry-After` header, given as a delay or an HTTP date."""
    header = response.headers.get('Retry-After')
    if header is None:
        return None
    try:
        return max(0.0, float(header))
    except ValueError:
        pass
    try:
        moment = parsedate_to_datetime(header)
    except (TypeError, ValueError):
        return None
    if moment is None:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return max(0.0, (moment - datetime.now(timezone.utc)).total_seconds())


class ShopClient:
    """Paginated read access to the shop's GraphQL Admin API."""

    def __init__(self):
        self._url = settings.SHOP_API_URL
        self._timeout = settings.SHOP_REQUEST_TIMEOUT
        self._max_retries = settings.SHOP_MAX_RETRIES
        self._session = requests.Session()
        self._session.headers.update({'X-Shopify-Access-Token': settings.SHOP_ACCESS_TOKEN})
        self._rate_limiter = RateLimiter(settings.SHOP_RATE_LIMIT)

    def fetch_products(self, cursor: Optional[str], query: Optional[str] = None) -> Page:
        return self._fetch_page('products', PRODUCTS_QUERY, cursor, query)

    def fetch_collections(self, cursor: Optional[str], query: Optional[str] = None) -> Page:
        return self._fetch_page('collections', COLLECTIONS_QUERY, cursor, query)

    def fetch_orders(self, cursor: Optional[str], query: Optional[str] = None) -> Page:
        return self._fetch_page('orders', ORDERS_QUERY, cursor, query)

    def fetcher(self, resource: str):
        """Return the page fetcher for 'products', 'collections' or 'orders'."""
        fetchers = {
            'products': self.fetch_products,
            'collections': self.fetch_collections,
            'orders': self.fetch_orders,
        }
        try:
            return fetchers[resource]
        except KeyError:
            raise ValueError(f"Unknown shop resource {resource!r}.") from None

    def _fetch_page(self, root: str, document: str, cursor, query) -> Page:
        data = self.execute(document, {'cursor': cursor, 'query': query})
        connection = data.get(root)
        if not isinstance(connection, dict):
            raise FetchError(f"Shop response has no '{root}' connection.")

        records = [edge['node'] for edge in connection.get('edges') or [] if edge.get('node')]
        page_info = connection.get('pageInfo') or {}
        return Page(
            records=records,
            next_cursor=page_info.get('endCursor'),
            has_more=bool(page_info.get('hasNextPage')),
        )

    def execute(self, document: str, variables: dict) -> dict:
        """POST a GraphQL document and return its `data` object."""
        payload = {'query': document, 'variables': variables}
        backoff = 1.0
        for attempt in range(1, self._max_retries + 1):
            self._rate_limiter.acquire()
            response = self._post(payload)

            if response.status_code == 429:
                retry_after = retry_after_seconds(response)
                wait = retry_after if retry_after is not None else backoff
                logger.warning(
                    "429 Too Many Requests (attempt %d/%d). Waiting %.1fs before retry.",
                    attempt, self._max_retries, wait,
                )
                time.sleep(wait)
                backoff *= 2
                continue

            try:
                response.raise_for_status()
            except requests.HTTPError as exc:
                raise FetchError(f"Shop API returned HTTP {response.status_code}.") from exc

            try:
                body = response.json()
            except ValueError as exc:
                raise FetchError("Shop API returned a non-JSON body.") from exc
            if not isinstance(body, dict):
                raise FetchError("Shop API returned an unexpected body.")

            errors = body.get('errors')
            if errors:
                if not isinstance(errors, list):
                    errors = [errors]
                if self._is_throttled(errors):
                    logger.warning(
                        "Query throttled (attempt %d/%d). Waiting %.1fs before retry.",
                        attempt, self._max_retries, backoff,
                    )
                    time.sleep(backoff)
                    backoff *= 2
                    continue
                messages = '; '.join(
                    str(e.get('message', e)) if isinstance(e, dict) else str(e) for e in errors
                )
                raise FetchError(f"Shop API query failed: {messages}")

            return body.get('data') or {}

        raise FetchError(
            f"API request POST {self._url} failed after {self._max_retries} retries due to rate limiting."
        )

    def _post(self, payload: dict) -> requests.Response:
        try:
            return self._session.post(self._url, json=payload, timeout=self._timeout)
        except requests.Timeout as exc:
            raise FetchError(f"Shop API request timed out after {self._timeout}s.") from exc
        except requests.RequestException as exc:
            raise FetchError(f"Shop API request failed: {exc}") from exc

    @staticmethod
    def _is_throttled(errors) -> bool:
        return any(
            (error.get('extensions') or {}).get('code') == 'THROTTLED'
            for error in errors
            if isinstance(error, dict)
        )
