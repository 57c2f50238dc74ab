PRODUCTS_PAGE_SIZE = 250
COLLECTIONS_PAGE_SIZE = 50
ORDERS_PAGE_SIZE = 100

PRODUCTS_QUERY = """
query fetchProducts($cursor: String, $query: String) {
  products(first: %d, after: $cursor, query: $query) {
    pageInfo { hasNextPage endCursor }
    edges {
      node {
        id
        title
        description
        handle
        productType
        tags
        vendor
        status
        createdAt
        updatedAt
        options { name values }
        variants(first: 100) {
          edges {
            node {
              id
              title
              sku
              price
              compareAtPrice
              inventoryQuantity
              selectedOptions { name value }
            }
          }
        }
        images(first: 25) {
          edges { node { id url altText } }
        }
        collections(first: 100) {
          edges { node { id title handle } }
        }
      }
    }
  }
}
""" % PRODUCTS_PAGE_SIZE

COLLECTIONS_QUERY = """
query fetchCollections($cursor: String, $query: String) {
  collections(first: %d, after: $cursor, query: $query) {
    pageInfo { hasNextPage endCursor }
    edges {
      node {
        id
        title
        handle
        description
        descriptionHtml
        updatedAt
        image { url altText width height }
        productsCount { count }
      }
    }
  }
}
""" % COLLECTIONS_PAGE_SIZE

ORDERS_QUERY = """
query fetchOrders($cursor: String, $query: String) {
  orders(first: %d, after: $cursor, query: $query) {
    pageInfo { hasNextPage endCursor }
    edges {
      node {
        id
        name
        createdAt
        lineItems(first: 50) {
          edges {
            node {
              quantity
              product { id title }
            }
          }
        }
      }
    }
  }
}
""" % ORDERS_PAGE_SIZE
