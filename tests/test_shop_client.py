import json
import threading
import time
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from unittest.mock import patch

import pytest
import requests
import responses as responses_lib

from catalog_sync.shop_client import FetchError, Page, RateLimiter, ShopClient

API_URL = 'https://test-store.myshopify.com/admin/api/2023-07/graphql.json'


# ---------------------------------------------------------------------------
# Page fetching
# ---------------------------------------------------------------------------

class TestFetchPage:
    @responses_lib.activate
    def test_products_page_is_normalized(self, product_node, graphql_page):
        body = graphql_page('products', [product_node(1), product_node(2)], end_cursor='c1', has_next_page=True)
        responses_lib.add(responses_lib.POST, API_URL, json=body, status=200)

        page = ShopClient().fetch_products(None)

        assert isinstance(page, Page)
        assert [record['id'] for record in page.records] == [
            'gid://shopify/Product/1', 'gid://shopify/Product/2',
        ]
        assert page.next_cursor == 'c1'
        assert page.has_more is True

    @responses_lib.activate
    def test_cursor_and_filter_are_sent_as_variables(self, graphql_page):
        responses_lib.add(responses_lib.POST, API_URL, json=graphql_page('orders', []), status=200)

        ShopClient().fetch_orders('abc', "created_at:>=2024-01-01")

        sent = json.loads(responses_lib.calls[0].request.body)
        assert sent['variables'] == {'cursor': 'abc', 'query': "created_at:>=2024-01-01"}
        assert 'orders(first: 100' in sent['query']

    @responses_lib.activate
    def test_access_token_header_is_sent(self, graphql_page):
        responses_lib.add(responses_lib.POST, API_URL, json=graphql_page('collections', []), status=200)

        ShopClient().fetch_collections(None)

        assert responses_lib.calls[0].request.headers['X-Shopify-Access-Token'] == 'shpat-test-token'

    @responses_lib.activate
    def test_last_page_has_no_more(self, graphql_page):
        responses_lib.add(responses_lib.POST, API_URL, json=graphql_page('products', []), status=200)

        page = ShopClient().fetch_products('c9')

        assert page.records == []
        assert page.has_more is False
        assert page.next_cursor is None

    @responses_lib.activate
    def test_missing_connection_raises_fetch_error(self):
        responses_lib.add(responses_lib.POST, API_URL, json={'data': {}}, status=200)

        with pytest.raises(FetchError, match="'products'"):
            ShopClient().fetch_products(None)

    def test_unknown_resource_is_rejected(self):
        with pytest.raises(ValueError):
            ShopClient().fetcher('customers')


# ---------------------------------------------------------------------------
# Retry on 429
# ---------------------------------------------------------------------------

class TestRetryOn429:
    @responses_lib.activate
    def test_retry_after_header_respected(self, graphql_page):
        responses_lib.add(responses_lib.POST, API_URL, status=429, headers={'Retry-After': '0'})
        responses_lib.add(responses_lib.POST, API_URL, json=graphql_page('products', []), status=200)

        with patch('catalog_sync.shop_client.time.sleep') as mock_sleep:
            page = ShopClient().fetch_products(None)

        assert page.records == []
        assert len(responses_lib.calls) == 2
        mock_sleep.assert_called_once_with(0.0)

    @responses_lib.activate
    def test_exponential_backoff_when_no_retry_after(self, graphql_page):
        responses_lib.add(responses_lib.POST, API_URL, status=429)
        responses_lib.add(responses_lib.POST, API_URL, status=429)
        responses_lib.add(responses_lib.POST, API_URL, json=graphql_page('products', []), status=200)

        with patch('catalog_sync.shop_client.time.sleep') as mock_sleep:
            ShopClient().fetch_products(None)

        sleep_args = [call.args[0] for call in mock_sleep.call_args_list]
        assert sleep_args == [1.0, 2.0]

    @responses_lib.activate
    def test_raises_after_max_retries_exceeded(self):
        for _ in range(3):
            responses_lib.add(responses_lib.POST, API_URL, status=429)

        with patch('catalog_sync.shop_client.time.sleep'):
            with pytest.raises(FetchError, match='rate limiting'):
                ShopClient().fetch_products(None)

    @responses_lib.activate
    def test_non_numeric_retry_after_falls_back_to_backoff(self, graphql_page):
        responses_lib.add(responses_lib.POST, API_URL, status=429, headers={'Retry-After': 'next-tuesday'})
        responses_lib.add(responses_lib.POST, API_URL, json=graphql_page('products', []), status=200)

        with patch('catalog_sync.shop_client.time.sleep') as mock_sleep:
            ShopClient().fetch_products(None)

        mock_sleep.assert_called_once_with(1.0)

    @responses_lib.activate
    def test_http_date_retry_after_is_converted_to_seconds(self, graphql_page):
        retry_at = format_datetime(datetime.now(timezone.utc) + timedelta(seconds=30), usegmt=True)
        responses_lib.add(responses_lib.POST, API_URL, status=429, headers={'Retry-After': retry_at})
        responses_lib.add(responses_lib.POST, API_URL, json=graphql_page('products', []), status=200)

        with patch('catalog_sync.shop_client.time.sleep') as mock_sleep:
            ShopClient().fetch_products(None)

        assert 25 < mock_sleep.call_args.args[0] <= 30


# ---------------------------------------------------------------------------
# GraphQL errors
# ---------------------------------------------------------------------------

class TestGraphqlErrors:
    @responses_lib.activate
    def test_throttled_query_is_retried(self, graphql_page):
        throttled = {'errors': [{'message': 'Throttled', 'extensions': {'code': 'THROTTLED'}}]}
        responses_lib.add(responses_lib.POST, API_URL, json=throttled, status=200)
        responses_lib.add(responses_lib.POST, API_URL, json=graphql_page('products', []), status=200)

        with patch('catalog_sync.shop_client.time.sleep') as mock_sleep:
            ShopClient().fetch_products(None)

        assert len(responses_lib.calls) == 2
        mock_sleep.assert_called_once_with(1.0)

    @responses_lib.activate
    def test_other_errors_raise_with_messages(self):
        body = {'errors': [{'message': 'Field does not exist'}, {'message': 'Bad query'}]}
        responses_lib.add(responses_lib.POST, API_URL, json=body, status=200)

        with pytest.raises(FetchError, match='Field does not exist; Bad query'):
            ShopClient().fetch_products(None)

        assert len(responses_lib.calls) == 1

    @responses_lib.activate
    def test_non_json_body_raises(self):
        responses_lib.add(responses_lib.POST, API_URL, body='<html>oops</html>', status=200)

        with pytest.raises(FetchError, match='non-JSON'):
            ShopClient().fetch_products(None)


# ---------------------------------------------------------------------------
# HTTP and transport errors – no retry
# ---------------------------------------------------------------------------

class TestHttpErrors:
    @pytest.mark.parametrize('status_code', [400, 401, 500])
    @responses_lib.activate
    def test_non_429_error_raises_fetch_error_immediately(self, status_code):
        responses_lib.add(responses_lib.POST, API_URL, json={'error': 'fail'}, status=status_code)

        with pytest.raises(FetchError) as excinfo:
            ShopClient().fetch_products(None)

        assert isinstance(excinfo.value.__cause__, requests.HTTPError)
        assert len(responses_lib.calls) == 1

    @responses_lib.activate
    def test_timeout_is_a_fetch_error(self):
        responses_lib.add(responses_lib.POST, API_URL, body=requests.Timeout('slow'))

        with pytest.raises(FetchError, match='timed out'):
            ShopClient().fetch_products(None)

    @responses_lib.activate
    def test_connection_error_is_a_fetch_error(self):
        responses_lib.add(responses_lib.POST, API_URL, body=requests.ConnectionError('refused'))

        with pytest.raises(FetchError, match='refused'):
            ShopClient().fetch_products(None)


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------

class TestRateLimiting:
    def test_requests_within_window_are_immediate(self):
        limiter = RateLimiter(rate=5)
        start = time.monotonic()
        for _ in range(5):
            limiter.acquire()
        assert time.monotonic() - start < 0.1

    def test_request_over_the_limit_waits_for_new_window(self):
        limiter = RateLimiter(rate=2)
        with patch('catalog_sync.shop_client.time.sleep') as mock_sleep:
            for _ in range(3):
                limiter.acquire()

        mock_sleep.assert_called_once()
        assert 0 < mock_sleep.call_args.args[0] <= 1.0

    def test_concurrent_acquires_complete_without_errors(self):
        limiter = RateLimiter(rate=5)
        errors = []

        def acquire():
            try:
                limiter.acquire()
            except Exception as exc:
                errors.append(exc)

        with patch('catalog_sync.shop_client.time.sleep'):
            threads = [threading.Thread(target=acquire) for _ in range(30)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

        assert not errors
        assert 0 < limiter._used <= limiter.rate

    def test_rate_must_be_positive(self):
        with pytest.raises(ValueError):
            RateLimiter(rate=0)

    def test_acquire_reports_wait(self):
        limiter = RateLimiter(rate=1, period=0.5)
        with patch('catalog_sync.shop_client.time.sleep') as mock_sleep:
            assert limiter.acquire() == 0.0
            waited = limiter.acquire()

        assert 0 < waited <= 0.5
        mock_sleep.assert_called_once_with(waited)
