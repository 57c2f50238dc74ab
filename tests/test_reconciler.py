import logging

import pytest

from catalog_sync.models import Collection
from catalog_sync.reconciler import load_collection_handles, reconcile_collections, resolve_handles

TITLE_TO_HANDLE = {'Summer': 'summer', 'Sale': 'sale-items'}


def test_titles_resolve_to_handles_in_order():
    product = {'external_id': 'p1', 'collections': ['Sale', 'Summer']}
    assert resolve_handles(product, TITLE_TO_HANDLE) == ['sale-items', 'summer']


def test_duplicate_handles_are_collapsed():
    product = {'external_id': 'p1', 'collections': ['Summer', 'Summer']}
    assert resolve_handles(product, TITLE_TO_HANDLE) == ['summer']


def test_unknown_title_is_dropped_with_warning(caplog):
    product = {'external_id': 'p1', 'collections': ['Winter', 'Summer']}

    with caplog.at_level(logging.WARNING, logger='catalog_sync.reconciler'):
        handles = resolve_handles(product, TITLE_TO_HANDLE)

    assert handles == ['summer']
    assert 'Winter' in caplog.text


def test_reconcile_does_not_mutate_input():
    products = [{'external_id': 'p1', 'collections': ['Summer'], 'collection_handles': []}]

    reconciled = reconcile_collections(products, TITLE_TO_HANDLE)

    assert reconciled[0]['collection_handles'] == ['summer']
    assert products[0]['collection_handles'] == []


@pytest.mark.django_db
def test_map_is_read_from_collection_table():
    Collection.objects.create(external_id='gid://shopify/Collection/1', title='Summer', handle='summer')
    assert load_collection_handles() == {'Summer': 'summer'}
