import html
import logging

from ..credentials import WooCommerceCredentials
from ..errors import PlatformUserError
from ..platforms import WOOCOMMERCE
from .http import ApiClient

logger = logging.getLogger(__name__)

PAGE_SIZE = 100


class WooCommerceClient(ApiClient):
    """WooCommerce REST API v3 over HTTP Basic auth."""

    platform = WOOCOMMERCE

    def __init__(self, credentials: WooCommerceCredentials, **kwargs):
        kwargs.setdefault('rate_limit', credentials.rate_limit)
        super().__init__(f"{credentials.url.rstrip('/')}/wp-json/wc/v3", **kwargs)
        self._session.auth = (credentials.consumer_key, credentials.consumer_secret)

    # Products

    def create_product(self, payload: dict) -> dict:
        return self._request_with_retry('POST', f"{self._base_url}/products", json=payload).json()

    def update_product(self, product_id, payload: dict) -> dict:
        return self._request_with_retry('PUT', f"{self._base_url}/products/{product_id}", json=payload).json()

    def get_product(self, product_id) -> dict:
        return self._request_with_retry('GET', f"{self._base_url}/products/{product_id}").json()

    def iter_products(self, **filters):
        """Yield every product matching `filters` (e.g. status='publish'), page by page."""
        return self._paginate('products', **filters)

    # Variations

    def list_variations(self, product_id) -> list[dict]:
        return list(self._paginate(f"products/{product_id}/variations"))

    def batch_variations(self, product_id, create=(), update=(), delete=()) -> dict:
        body = {'create': list(create), 'update': list(update), 'delete': list(delete)}
        return self._request_with_retry(
            'POST', f"{self._base_url}/products/{product_id}/variations/batch", json=body,
        ).json()

    # Categories

    def list_categories(self) -> list[dict]:
        return list(self._paginate('products/categories'))

    def create_category(self, name: str) -> dict:
        return self._request_with_retry('POST', f"{self._base_url}/products/categories", json={'name': name}).json()

    def ensure_category(self, name: str) -> int:
        """Return the id of the category called `name`, creating it when missing."""
        existing = self._find_category(name)
        if existing is not None:
            return existing
        try:
            created = self.create_category(name)
        except PlatformUserError as exc:
            # Created concurrently by another worker.
            if not any(err.startswith('term_exists') for err in exc.user_errors):
                raise
            existing = self._find_category(name)
            if existing is None:
                raise
            return existing
        logger.info("Created WooCommerce category %r (id=%s).", name, created['id'])
        return created['id']

    def _find_category(self, name: str):
        for category in self._paginate('products/categories', search=name):
            # Names come back HTML-escaped ("Prints &amp; Posters").
            if html.unescape(category.get('name', '')).casefold() == name.casefold():
                return category['id']
        return None

    def _paginate(self, path: str, **params):
        """
        Yield the items of a collection endpoint across all of its pages.

        Paging stops at the page count WooCommerce reports in X-WP-TotalPages,
        or at the first short page when that header is missing.
        """
        page = 1
        while True:
            response = self._request_with_retry(
                'GET', f"{self._base_url}/{path}", params={**params, 'per_page': PAGE_SIZE, 'page': page},
            )
            items = response.json()
            yield from items

            total_pages = response.headers.get('X-WP-TotalPages', '')
            if total_pages.isdigit():
                if page >= int(total_pages):
                    return
            elif len(items) < PAGE_SIZE:
                return
            if not items:
                return
            page += 1
