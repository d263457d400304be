import logging
from typing import Optional

from ..credentials import ShopifyCredentials
from ..errors import PlatformUserError, RateLimited
from ..platforms import SHOPIFY
from .http import ApiClient

logger = logging.getLogger(__name__)

PRODUCT_ID_PAGE_SIZE = 100

PRODUCT_FIELDS = '''
    id
    title
    handle
    status
    descriptionHtml
    vendor
    productType
    tags
    category { id name }
    seo { title description }
    options { name values }
    metafield(namespace: "catalog_sync", key: "canonical") { value }
    variants(first: 100) {
      edges {
        node {
          id
          sku
          price
          compareAtPrice
          inventoryQuantity
          selectedOptions { name value }
          inventoryItem { id measurement { weight { unit value } } }
          media(first: 1) { edges { node { ... on MediaImage { id image { url } } } } }
        }
      }
    }
    media(first: 50) {
      edges { node { ... on MediaImage { id status alt image { url } } } }
    }
'''

QUERIES = {
    'product_create': '''
      mutation productCreate($product: ProductCreateInput!) {
        productCreate(product: $product) {
          product {
            id
            variants(first: 1) {
              edges { node { id selectedOptions { name value } inventoryItem { id } } }
            }
          }
          userErrors { field message }
        }
      }
    ''',
    'product_create_media': '''
      mutation productCreateMedia($productId: ID!, $media: [CreateMediaInput!]!) {
        productCreateMedia(productId: $productId, media: $media) {
          media { ... on MediaImage { id status alt } }
          mediaUserErrors { field message }
        }
      }
    ''',
    'product_media': '''
      query getProductMedia($id: ID!) {
        product(id: $id) {
          media(first: 50) { edges { node { ... on MediaImage { id status alt image { url } } } } }
        }
      }
    ''',
    'variants_bulk_create': '''
      mutation productVariantsBulkCreate($productId: ID!, $variants: [ProductVariantsBulkInput!]!) {
        productVariantsBulkCreate(productId: $productId, variants: $variants) {
          productVariants { id selectedOptions { name value } inventoryItem { id } }
          userErrors { field message }
        }
      }
    ''',
    'variants_bulk_update': '''
      mutation productVariantsBulkUpdate($productId: ID!, $variants: [ProductVariantsBulkInput!]!) {
        productVariantsBulkUpdate(productId: $productId, variants: $variants) {
          productVariants { id price }
          userErrors { field message }
        }
      }
    ''',
    'inventory_item': '''
      query getInventoryItem($id: ID!) {
        inventoryItem(id: $id) {
          id
          inventoryLevels(first: 5) { edges { node { id location { id } } } }
        }
      }
    ''',
    'locations': '''
      query getLocations {
        locations(first: 10) { edges { node { id isActive } } }
      }
    ''',
    'inventory_set': '''
      mutation inventorySetQuantities($input: InventorySetQuantitiesInput!) {
        inventorySetQuantities(input: $input) {
          inventoryAdjustmentGroup { createdAt reason }
          userErrors { field message }
        }
      }
    ''',
    'product_update': '''
      mutation productUpdate($product: ProductUpdateInput!) {
        productUpdate(product: $product) {
          product { id status }
          userErrors { field message }
        }
      }
    ''',
    'product_delete_media': '''
      mutation productDeleteMedia($productId: ID!, $mediaIds: [ID!]!) {
        productDeleteMedia(productId: $productId, mediaIds: $mediaIds) {
          deletedMediaIds
          mediaUserErrors { field message }
        }
      }
    ''',
    'product_reorder_media': '''
      mutation productReorderMedia($id: ID!, $moves: [MoveInput!]!) {
        productReorderMedia(id: $id, moves: $moves) {
          job { id }
          mediaUserErrors { field message }
        }
      }
    ''',
    'variants_bulk_delete': '''
      mutation productVariantsBulkDelete($productId: ID!, $variantsIds: [ID!]!) {
        productVariantsBulkDelete(productId: $productId, variantsIds: $variantsIds) {
          product { id }
          userErrors { field message }
        }
      }
    ''',
    'product_ids': '''
      query listProductIds($first: Int!, $after: String) {
        products(first: $first, after: $after) {
          pageInfo { hasNextPage endCursor }
          edges { node { id } }
        }
      }
    ''',
    'product': 'query getProduct($id: ID!) { product(id: $id) { %s } }' % PRODUCT_FIELDS,
}


def nodes(connection) -> list:
    """Flatten a GraphQL connection ({edges: [{node}]}) into a list of nodes."""
    if not connection:
        return []
    if isinstance(connection, list):
        return connection
    if 'nodes' in connection:
        return connection['nodes']
    return [edge['node'] for edge in connection.get('edges', [])]


def format_user_errors(user_errors) -> list[str]:
    return [f"{'.'.join(err.get('field') or [])}: {err.get('message')}" for err in user_errors]


class ShopifyClient(ApiClient):
    """Shopify Admin GraphQL API authenticated with an access-token header."""

    platform = SHOPIFY

    def __init__(self, credentials: ShopifyCredentials, **kwargs):
        kwargs.setdefault('rate_limit', credentials.rate_limit)
        domain = credentials.shop.replace('https://', '').replace('http://', '').rstrip('/')
        if not domain.endswith('.myshopify.com'):
            domain = f"{domain}.myshopify.com"
        super().__init__(f"https://{domain}/admin/api/{credentials.api_version}", **kwargs)
        self._session.headers.update({'X-Shopify-Access-Token': credentials.access_token})

    def graphql(self, query: str, variables: Optional[dict] = None) -> dict:
        """Run one GraphQL document and return its `data`, retrying throttling."""
        return self._retry.run(lambda: self._graphql_once(query, variables or {}), 'Shopify GraphQL')

    def _graphql_once(self, query, variables) -> dict:
        body = self._send('POST', f"{self._base_url}/graphql.json",
                          json={'query': query, 'variables': variables}).json()
        errors = body.get('errors')
        if errors:
            if any((err.get('extensions') or {}).get('code') == 'THROTTLED' for err in errors):
                raise RateLimited('Shopify GraphQL request was throttled.', retry_after=self._throttle_wait(body))
            raise PlatformUserError(self.platform, [err.get('message', str(err)) for err in errors])
        return body.get('data') or {}

    @staticmethod
    def _throttle_wait(body) -> Optional[float]:
        cost = (body.get('extensions') or {}).get('cost') or {}
        status = cost.get('throttleStatus') or {}
        try:
            missing = cost['requestedQueryCost'] - status['currentlyAvailable']
            return max(0.0, missing / status['restoreRate'])
        except (KeyError, TypeError, ZeroDivisionError):
            return None

    def _mutate(self, name: str, root: str, variables: dict, errors_key: str = 'userErrors') -> dict:
        payload = self.graphql(QUERIES[name], variables).get(root) or {}
        user_errors = payload.get(errors_key) or []
        if user_errors:
            raise PlatformUserError(self.platform, format_user_errors(user_errors))
        return payload

    # Products

    def create_product(self, product_input: dict) -> dict:
        return self._mutate('product_create', 'productCreate', {'product': product_input})['product']

    def update_product(self, product_update: dict) -> dict:
        return self._mutate('product_update', 'productUpdate', {'product': product_update})['product']

    def get_product(self, product_id: str) -> Optional[dict]:
        return self.graphql(QUERIES['product'], {'id': product_id}).get('product')

    def iter_product_ids(self, page_size: int = PRODUCT_ID_PAGE_SIZE):
        """Yield the id of every product in the shop, following the connection cursor."""
        cursor = None
        while True:
            variables = {'first': page_size, 'after': cursor}
            connection = self.graphql(QUERIES['product_ids'], variables).get('products') or {}
            for node in nodes(connection):
                yield node['id']
            page_info = connection.get('pageInfo') or {}
            if not page_info.get('hasNextPage'):
                return
            cursor = page_info.get('endCursor')

    # Media

    def create_media(self, product_id: str, media: list[dict]) -> list[dict]:
        payload = self._mutate('product_create_media', 'productCreateMedia',
                               {'productId': product_id, 'media': media}, errors_key='mediaUserErrors')
        return payload.get('media') or []

    def get_product_media(self, product_id: str) -> list[dict]:
        product = self.graphql(QUERIES['product_media'], {'id': product_id}).get('product') or {}
        return nodes(product.get('media'))

    def delete_media(self, product_id: str, media_ids: list[str]) -> list[str]:
        payload = self._mutate('product_delete_media', 'productDeleteMedia',
                               {'productId': product_id, 'mediaIds': media_ids}, errors_key='mediaUserErrors')
        return payload.get('deletedMediaIds') or []

    def reorder_media(self, product_id: str, moves: list[dict]) -> dict:
        """Move media to new positions; Shopify applies the moves in a background job."""
        return self._mutate('product_reorder_media', 'productReorderMedia',
                            {'id': product_id, 'moves': moves}, errors_key='mediaUserErrors')

    # Variants

    def create_variants(self, product_id: str, variants: list[dict]) -> list[dict]:
        payload = self._mutate('variants_bulk_create', 'productVariantsBulkCreate',
                               {'productId': product_id, 'variants': variants})
        return payload.get('productVariants') or []

    def update_variants(self, product_id: str, variants: list[dict]) -> list[dict]:
        payload = self._mutate('variants_bulk_update', 'productVariantsBulkUpdate',
                               {'productId': product_id, 'variants': variants})
        return payload.get('productVariants') or []

    def delete_variants(self, product_id: str, variant_ids: list[str]):
        self._mutate('variants_bulk_delete', 'productVariantsBulkDelete',
                     {'productId': product_id, 'variantsIds': variant_ids})

    # Inventory

    def get_inventory_location(self, inventory_item_id: str) -> Optional[str]:
        """Location id of the item's first inventory level, else the first active location."""
        item = self.graphql(QUERIES['inventory_item'], {'id': inventory_item_id}).get('inventoryItem') or {}
        for level in nodes(item.get('inventoryLevels')):
            return level['location']['id']
        for location in nodes(self.graphql(QUERIES['locations']).get('locations')):
            if location.get('isActive', True):
                return location['id']
        return None

    def set_inventory(self, quantities: list[dict], location_id: str) -> dict:
        """Absolute set of `available`; bypasses the compare-quantity check."""
        return self._mutate('inventory_set', 'inventorySetQuantities', {'input': {
            'reason': 'correction',
            'name': 'available',
            'ignoreCompareQuantity': True,
            'quantities': [
                {'inventoryItemId': q['inventoryItemId'], 'locationId': location_id, 'quantity': q['quantity']}
                for q in quantities
            ],
        }})

    # Collections

    def ensure_smart_collection(self, product_type: str) -> dict:
        """
        Return the smart collection titled `product_type`, creating it when missing.

        A new collection is published and auto-populated by a product type
        rule. Titles are compared case-insensitively.
        """
        url = f"{self._base_url}/smart_collections.json"
        found = self._request_with_retry('GET', url, params={'title': product_type}).json()
        for collection in found.get('smart_collections') or []:
            if (collection.get('title') or '').casefold() == product_type.casefold():
                return collection

        body = {'smart_collection': {
            'title': product_type,
            'rules': [{'column': 'type', 'relation': 'equals', 'condition': product_type}],
            'published': True,
        }}
        created = self._request_with_retry('POST', url, json=body).json()['smart_collection']
        logger.info("Created Shopify smart collection %r (id=%s).", product_type, created['id'])
        return created
