import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from .errors import PlatformUserError
from .platforms import GALLERY_STORE, WOOCOMMERCE
from .taxonomy import resolve_category
from .transformers.base import GalleryStorePayload, WooCommercePayload
from .transformers.gallery import GalleryStoreRecord
from .transformers.woocommerce import WooCommerceRecord

logger = logging.getLogger(__name__)

BATCH_SIZE = 100
MAX_WRITE_ATTEMPTS = 3


class WooCommercePusher:
    """One POST or PUT per product, then one batch call for its variations."""

    platform = WOOCOMMERCE
    multi_step = False

    def __init__(self, client):
        self.client = client

    def prepare_context(self, product, context):
        category = resolve_category(product.product_type, default=context.default_category)
        context.category_ids[category.name] = self.client.ensure_category(category.name)

    def push(self, payload: WooCommercePayload, external_id: Optional[str],
             on_created: Callable[[str], None]) -> str:
        if external_id:
            self.client.update_product(external_id, payload.product)
            product_id = external_id
        else:
            created = self.client.create_product(payload.product)
            product_id = str(created['id'])
            # Record the id before touching variations so a retry updates instead of re-creating.
            on_created(product_id)

        if payload.is_variable:
            self._sync_variations(product_id, payload, existing=bool(external_id))
        return product_id

    def _sync_variations(self, product_id: str, payload: WooCommercePayload, existing: bool):
        option_names = [attr['name'] for attr in payload.product['attributes'] if attr.get('variation')]
        current = {}
        if existing:
            for variation in self.client.list_variations(product_id):
                current[self._key(variation, option_names)] = variation['id']

        create, update = [], []
        for variation in payload.variations:
            variation_id = current.pop(self._key(variation, option_names), None)
            if variation_id is None:
                create.append(variation)
            else:
                update.append({**variation, 'id': variation_id})
        delete = list(current.values())
        if delete:
            logger.info("Removing %d stale variation(s) from WooCommerce product %s.", len(delete), product_id)

        for start in range(0, max(len(create), len(update), len(delete)), BATCH_SIZE):
            result = self.client.batch_variations(
                product_id,
                create=create[start:start + BATCH_SIZE],
                update=update[start:start + BATCH_SIZE],
                delete=delete[start:start + BATCH_SIZE],
            )
            self._raise_item_errors(result)

    @staticmethod
    def _key(variation: dict, option_names: list) -> tuple:
        by_name = {attr.get('name'): attr.get('option') for attr in variation.get('attributes') or []}
        return tuple(by_name.get(name) for name in option_names)

    def _raise_item_errors(self, result: dict):
        errors = [
            f"{item['error'].get('code')}: {item['error'].get('message')}"
            for action in ('create', 'update', 'delete')
            for item in result.get(action) or []
            if isinstance(item, dict) and item.get('error')
        ]
        if errors:
            raise PlatformUserError(self.platform, errors)

    def fetch_record(self, external_id: str) -> WooCommerceRecord:
        product = self.client.get_product(external_id)
        variations = self.client.list_variations(external_id) if product.get('type') == 'variable' else []
        return WooCommerceRecord(product=product, variations=tuple(variations))

    def iter_records(self):
        """Yield (external id, record) for every product in the store."""
        for product in self.client.iter_products():
            variations = self.client.list_variations(product['id']) if product.get('type') == 'variable' else []
            yield str(product['id']), WooCommerceRecord(product=product, variations=tuple(variations))

    def linked_state(self, product, record) -> tuple:
        return None, {}


class GalleryStorePusher:
    """
    Upserts one artwork into its collection file.

    The file is read, edited and written back guarded by its blob SHA; when
    another writer got in first the write is retried on a fresh read.
    """

    platform = GALLERY_STORE
    multi_step = False

    def __init__(self, client, collection: str):
        self.client = client
        self.collection = collection

    def prepare_context(self, product, context):
        context.collection = context.collection or self.collection

    def push(self, payload: GalleryStorePayload, external_id: Optional[str],
             on_created: Callable[[str], None]) -> str:
        path = self.client.collection_path(payload.collection)
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            current = self.client.get_file(path)
            content = self._upsert(current.content if current else None, payload)
            try:
                self.client.put_file(
                    path, content,
                    message=f"Update {payload.slug} in {payload.collection}",
                    sha=current.sha if current else None,
                )
                return payload.external_id
            except PlatformUserError as exc:
                if exc.status_code != 409 or attempt == MAX_WRITE_ATTEMPTS:
                    raise
                logger.warning("%s changed while writing (attempt %d/%d); re-reading.",
                               path, attempt, MAX_WRITE_ATTEMPTS)

    @staticmethod
    def _upsert(content: Optional[dict], payload: GalleryStorePayload) -> dict:
        content = dict(content or {})
        artworks, replaced = [], False
        for artwork in content.get('artworks') or []:
            if artwork.get('slug') != payload.slug:
                artworks.append(artwork)
            elif not replaced:
                artworks.append(payload.artwork)
                replaced = True
        if not replaced:
            artworks.append(payload.artwork)

        info = dict(content.get('collection_info') or {'name': payload.collection})
        info['total_items'] = len(artworks)
        info['generated_date'] = datetime.now(timezone.utc).isoformat()
        content['collection_info'] = info
        content['artworks'] = artworks
        return content

    def fetch_record(self, external_id: str) -> Optional[GalleryStoreRecord]:
        collection, _, slug = external_id.partition('/')
        current = self.client.get_file(self.client.collection_path(collection))
        for artwork in (current.content.get('artworks') or []) if current else []:
            if artwork.get('slug') == slug:
                return GalleryStoreRecord(collection=collection, artwork=artwork)
        return None

    def iter_records(self):
        current = self.client.get_file(self.client.collection_path(self.collection))
        for artwork in (current.content.get('artworks') or []) if current else []:
            if artwork.get('slug'):
                yield f"{self.collection}/{artwork['slug']}", GalleryStoreRecord(self.collection, artwork)

    def linked_state(self, product, record) -> tuple:
        return None, {}
