import pytest

API_URL = 'https://test-store.myshopify.com/admin/api/2023-07/graphql.json'


@pytest.fixture(autouse=True)
def override_settings(settings):
    settings.SHOP_API_URL = API_URL
    settings.SHOP_ACCESS_TOKEN = 'shpat-test-token'
    settings.SHOP_STOREFRONT_URL = 'https://shop.example.com'
    settings.SHOP_RATE_LIMIT = 100
    settings.SYNC_PAGE_DELAY = 0
    settings.SYNC_COLLECTION_PAGE_DELAY = 0
    settings.SYNC_STATE_RETRY_BACKOFF = 0


def _edges(nodes):
    return {'edges': [{'node': node} for node in nodes]}


@pytest.fixture()
def product_node():
    """Build an upstream product node; keyword arguments override fields."""
    def _make(number=1, **overrides):
        node = {
            'id': f'gid://shopify/Product/{number}',
            'title': f'Product {number}',
            'description': 'Soft cotton shirt',
            'handle': f'product-{number}',
            'productType': 'Shirts',
            'tags': ['color:blue', 'material-cotton'],
            'vendor': 'Acme',
            'status': 'ACTIVE',
            'createdAt': '2024-01-01T10:00:00Z',
            'updatedAt': '2024-02-01T10:00:00Z',
            'options': [],
            'variants': _edges([{
                'id': f'gid://shopify/ProductVariant/{number}0',
                'title': 'Default',
                'sku': f'SKU-{number}',
                'price': '19.90',
                'compareAtPrice': None,
                'inventoryQuantity': 5,
                'selectedOptions': [],
            }]),
            'images': _edges([{'id': 'img', 'url': f'https://cdn.example.com/{number}.jpg', 'altText': 'Front'}]),
            'collections': _edges([]),
        }
        node.update(overrides)
        return node
    return _make


@pytest.fixture()
def collection_node():
    def _make(number=1, **overrides):
        node = {
            'id': f'gid://shopify/Collection/{number}',
            'title': f'Collection {number}',
            'handle': f'collection-{number}',
            'description': 'Summer picks',
            'descriptionHtml': '<p>Summer picks</p>',
            'updatedAt': '2024-02-01T10:00:00Z',
            'image': None,
            'productsCount': {'count': 3},
        }
        node.update(overrides)
        return node
    return _make


@pytest.fixture()
def order_node():
    def _make(number=1, lines=((1, 2),), **overrides):
        node = {
            'id': f'gid://shopify/Order/{number}',
            'name': f'#{1000 + number}',
            'createdAt': '2024-03-01T10:00:00Z',
            'lineItems': _edges([
                {'quantity': quantity, 'product': {'id': f'gid://shopify/Product/{product}', 'title': 'x'}}
                for product, quantity in lines
            ]),
        }
        node.update(overrides)
        return node
    return _make


@pytest.fixture()
def graphql_page():
    """Wrap nodes into a GraphQL response body for one connection."""
    def _make(root, nodes, end_cursor=None, has_next_page=False):
        return {
            'data': {
                root: {
                    'pageInfo': {'hasNextPage': has_next_page, 'endCursor': end_cursor},
                    'edges': [{'node': node} for node in nodes],
                },
            },
        }
    return _make
