import json
import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Optional

from . import conf
from .canonical import CanonicalProduct
from .clients.shopify import nodes
from .errors import PlatformUserError
from .platforms import SHOPIFY
from .state import PushState, StepResult
from .transformers.base import ShopifyPayload

logger = logging.getLogger(__name__)

MEDIA_READY = 'READY'
MEDIA_FAILED = 'FAILED'


def variant_key(option_values) -> str:
    """Stable JSON key for an option tuple, used to index variant ids in step state."""
    return json.dumps(list(option_values))


@dataclass
class PushContext:
    product: CanonicalProduct
    payload: ShopifyPayload
    external_id: Optional[str]
    step_state: dict
    # Commits identifiers produced midway through a step without advancing the checkpoint.
    persist: Callable[[dict], None]

    def merge(self, updates: dict) -> dict:
        """Fold `updates` into step_state and return the merged value of each touched key."""
        for key, value in updates.items():
            if isinstance(value, dict):
                self.step_state[key] = {**(self.step_state.get(key) or {}), **value}
            else:
                self.step_state[key] = value
        return {key: self.step_state[key] for key in updates}

    def save(self, updates: dict):
        self.persist(self.merge(updates))

    def replace(self, updates: dict):
        """Overwrite step_state keys outright; entries missing from `updates` are dropped."""
        self.step_state.update(updates)
        self.persist(dict(updates))


class ShopifyPipeline:
    """
    The seven ordered Shopify mutations for one product.

    Each step reads the identifiers earlier steps stored in the context and
    returns a StepResult holding the identifiers it produced. Sequencing,
    checkpoints and failure handling belong to the orchestrator.
    """

    platform = SHOPIFY
    multi_step = True

    def __init__(self, client, poll_attempts: Optional[int] = None, poll_interval: Optional[float] = None,
                 collections: Optional[bool] = None):
        self.client = client
        self.poll_attempts = poll_attempts or conf.media_poll_attempts()
        self.poll_interval = conf.media_poll_interval() if poll_interval is None else poll_interval
        self.collections = conf.shopify_collections() if collections is None else collections
        # Smart collection id per casefolded product type, shared by every push through this pipeline.
        self._collection_ids = {}
        self._collection_lock = Lock()
        self.steps = {
            PushState.NEW: self.create_shell,
            PushState.CREATED: self.upload_media,
            PushState.MEDIA_UPLOADED: self.create_variants,
            PushState.VARIANTS_CREATED: self.update_variants,
            PushState.VARIANTS_UPDATED: self.set_inventory,
            PushState.INVENTORY_SET: self.apply_metadata,
            PushState.METADATA_SET: self.activate,
        }

    def prepare_context(self, product, context):
        pass

    def step_from(self, state: PushState) -> Callable[[PushContext], StepResult]:
        return self.steps[state]

    # Step 1

    def create_shell(self, ctx: PushContext) -> StepResult:
        created = self.client.create_product(ctx.payload.product)
        variant_ids, inventory_ids = self._index_variants(nodes(created.get('variants')), ctx.payload)
        logger.info("Created Shopify product %s for %s.", created['id'], ctx.product.id)
        return StepResult(ok=True, external_id=created['id'],
                          state_updates={'variant_ids': variant_ids, 'inventory_item_ids': inventory_ids})

    # Step 2

    def upload_media(self, ctx: PushContext) -> StepResult:
        media_ids = dict(ctx.step_state.get('media_ids') or {})
        pending = [m for m in ctx.payload.media if m['originalSource'] not in media_ids]
        return self._upload_media(ctx, media_ids, pending)

    def _upload_media(self, ctx: PushContext, media_ids: dict, pending: list, reorder: bool = False) -> StepResult:
        if pending:
            created = self.client.create_media(ctx.external_id, pending)
            new_ids = {m['originalSource']: node['id'] for m, node in zip(pending, created) if node}
            media_ids.update(new_ids)
            ctx.save({'media_ids': new_ids})
        if not media_ids:
            return StepResult(ok=True, state_updates={'failed_media': []})

        statuses = self._poll_media(ctx.external_id, set(media_ids.values()))
        failed = [src for src, media_id in media_ids.items() if statuses.get(media_id) != MEDIA_READY]
        if failed:
            logger.warning("Product %s: %d media asset(s) not ready, continuing without them: %s",
                           ctx.product.id, len(failed), failed)
        if reorder:
            self._reorder_media(ctx, media_ids, list(statuses))
        return StepResult(ok=True, partial=bool(failed), state_updates={'failed_media': failed})

    def _reorder_media(self, ctx: PushContext, media_ids: dict, live_order: list):
        """Put live media back in canonical image order; uploads always land at the end."""
        wanted = [media_ids[m['originalSource']] for m in ctx.payload.media if m['originalSource'] in media_ids]
        if live_order == wanted:
            return
        moves = [{'id': media_id, 'newPosition': str(position)} for position, media_id in enumerate(wanted)]
        self.client.reorder_media(ctx.external_id, moves)

    def _poll_media(self, product_id: str, media_ids: set) -> dict:
        statuses = {}
        for attempt in range(1, self.poll_attempts + 1):
            statuses = {
                node['id']: node.get('status')
                for node in self.client.get_product_media(product_id) if node.get('id') in media_ids
            }
            waiting = [mid for mid in media_ids if statuses.get(mid) not in (MEDIA_READY, MEDIA_FAILED)]
            if not waiting:
                break
            logger.debug("Media for %s not ready (%d waiting, poll %d/%d).",
                         product_id, len(waiting), attempt, self.poll_attempts)
            if attempt < self.poll_attempts:
                time.sleep(self.poll_interval)
        return statuses

    # Step 3

    def create_variants(self, ctx: PushContext) -> StepResult:
        self._ensure_variant_ids(ctx)
        known = ctx.step_state.get('variant_ids') or {}
        missing = [v for v in ctx.payload.variants if variant_key(v['option_values']) not in known]
        if not missing:
            return StepResult(ok=True)
        created = self.client.create_variants(ctx.external_id, [self._variant_create_input(v) for v in missing])
        variant_ids, inventory_ids = self._index_variants(created, ctx.payload)
        return StepResult(ok=True, state_updates={'variant_ids': variant_ids, 'inventory_item_ids': inventory_ids})

    # Step 4

    def update_variants(self, ctx: PushContext) -> StepResult:
        self._ensure_variant_ids(ctx)
        variant_ids = ctx.step_state.get('variant_ids') or {}
        media_ids = ctx.step_state.get('media_ids') or {}
        failed = set(ctx.step_state.get('failed_media') or ())
        updates = []
        for variant in ctx.payload.variants:
            variant_id = variant_ids.get(variant_key(variant['option_values']))
            if variant_id is None:
                continue
            update = self._variant_update_input(variant, variant_id)
            image = variant.get('image_url')
            if image and image in media_ids and image not in failed:
                update['mediaId'] = media_ids[image]
            updates.append(update)
        if updates:
            self.client.update_variants(ctx.external_id, updates)
        return StepResult(ok=True)

    # Step 5

    def set_inventory(self, ctx: PushContext) -> StepResult:
        self._ensure_variant_ids(ctx)
        inventory_ids = ctx.step_state.get('inventory_item_ids') or {}
        quantities = []
        for variant in ctx.payload.variants:
            key = variant_key(variant['option_values'])
            # Zero is a real stock level; only untracked variants are skipped.
            if variant['inventory_quantity'] is not None and key in inventory_ids:
                quantities.append({'inventoryItemId': inventory_ids[key], 'quantity': variant['inventory_quantity']})
        if not quantities:
            return StepResult(ok=True)

        location_id = ctx.step_state.get('location_id')
        if not location_id:
            location_id = self.client.get_inventory_location(quantities[0]['inventoryItemId'])
        if not location_id:
            raise PlatformUserError(SHOPIFY, ['No active inventory location is available.'])
        self.client.set_inventory(quantities, location_id)
        return StepResult(ok=True, state_updates={'location_id': location_id})

    # Step 6

    def apply_metadata(self, ctx: PushContext) -> StepResult:
        payload = ctx.payload
        update = {
            'id': ctx.external_id,
            'descriptionHtml': payload.description_html,
            'seo': payload.seo,
            'metafields': list(payload.metafields),
        }
        if payload.category_id:
            update['category'] = payload.category_id
        self.client.update_product(update)
        self._ensure_collection(ctx.product.product_type)
        return StepResult(ok=True)

    # Step 7

    def activate(self, ctx: PushContext) -> StepResult:
        self.client.update_product({'id': ctx.external_id, 'status': ctx.payload.final_status})
        logger.info("Shopify product %s set to %s.", ctx.external_id, ctx.payload.final_status)
        return StepResult(ok=True)

    # Update path for a product whose pipeline already completed

    def update(self, ctx: PushContext) -> StepResult:
        """
        Bring a completed product in line with the canonical record.

        Besides the product fields this uploads images that are new or failed
        last time, drops images no longer listed and deletes variants whose
        option combination disappeared. The returned state holds the full
        identifier maps so the ledger never keeps ids of deleted objects.
        """
        payload = ctx.payload
        self._refresh_variant_ids(ctx)
        update = {key: value for key, value in payload.product.items() if key not in ('status', 'productOptions')}
        update.update({
            'id': ctx.external_id,
            'descriptionHtml': payload.description_html,
            'seo': payload.seo,
            'metafields': list(payload.metafields),
            'status': payload.final_status,
        })
        if payload.category_id:
            update['category'] = payload.category_id
        self.client.update_product(update)
        self._ensure_collection(ctx.product.product_type)

        media = self._resync_media(ctx)
        ctx.save(media.state_updates)
        created = self.create_variants(ctx)
        if created.state_updates:
            ctx.save(created.state_updates)
        self._delete_stale_variants(ctx)
        self.update_variants(ctx)
        inventory = self.set_inventory(ctx)

        state = {key: ctx.step_state.get(key) or {} for key in ('media_ids', 'variant_ids', 'inventory_item_ids')}
        state.update(media.state_updates)
        state.update(inventory.state_updates)
        return StepResult(ok=True, partial=media.partial, state_updates=state)

    def _resync_media(self, ctx: PushContext) -> StepResult:
        wanted = {m['originalSource'] for m in ctx.payload.media}
        failed = set(ctx.step_state.get('failed_media') or ())
        media_ids = dict(ctx.step_state.get('media_ids') or {})
        stale = {src: media_id for src, media_id in media_ids.items() if src not in wanted or src in failed}
        if stale:
            self.client.delete_media(ctx.external_id, list(stale.values()))
            media_ids = {src: media_id for src, media_id in media_ids.items() if src not in stale}
            ctx.replace({'media_ids': media_ids, 'failed_media': []})
            logger.info("Removed %d stale media asset(s) from %s.", len(stale), ctx.external_id)
        pending = [m for m in ctx.payload.media if m['originalSource'] not in media_ids]
        return self._upload_media(ctx, media_ids, pending, reorder=True)

    def _delete_stale_variants(self, ctx: PushContext):
        wanted = {variant_key(v['option_values']) for v in ctx.payload.variants}
        variant_ids = ctx.step_state.get('variant_ids') or {}
        stale = [key for key in variant_ids if key not in wanted]
        if not stale:
            return
        self.client.delete_variants(ctx.external_id, [variant_ids[key] for key in stale])
        inventory_ids = ctx.step_state.get('inventory_item_ids') or {}
        ctx.replace({
            'variant_ids': {key: vid for key, vid in variant_ids.items() if key in wanted},
            'inventory_item_ids': {key: iid for key, iid in inventory_ids.items() if key in wanted},
        })
        logger.info("Deleted %d variant(s) of %s no longer in the catalog: %s", len(stale), ctx.external_id, stale)

    def _ensure_collection(self, product_type: str) -> Optional[str]:
        """Smart collection id for `product_type`, created at most once per pipeline."""
        if not self.collections or not product_type:
            return None
        key = product_type.casefold()
        with self._collection_lock:
            if key not in self._collection_ids:
                self._collection_ids[key] = self.client.ensure_smart_collection(product_type)['id']
            return self._collection_ids[key]

    def fetch_record(self, external_id: str) -> Optional[dict]:
        return self.client.get_product(external_id)

    def iter_records(self):
        for product_id in self.client.iter_product_ids():
            node = self.client.get_product(product_id)
            if node:
                yield product_id, node

    def linked_state(self, product: CanonicalProduct, node: dict) -> tuple:
        """
        Checkpoint and step state for a product found live in the shop.

        It counts as activated so the next push takes the update path.
        Media ids are paired with the canonical images by position so that
        path does not upload them again; variant ids are re-read on update.
        """
        live_media = [media for media in nodes(node.get('media')) if media.get('image')]
        media_ids = {image.url: media['id'] for image, media in zip(product.images, live_media)}
        return PushState.ACTIVATED.value, {'media_ids': media_ids, 'failed_media': []}

    # Helpers

    def _ensure_variant_ids(self, ctx: PushContext):
        if not ctx.step_state.get('variant_ids'):
            self._refresh_variant_ids(ctx)

    def _refresh_variant_ids(self, ctx: PushContext):
        """Rebuild variant and inventory item ids from the live product."""
        node = self.client.get_product(ctx.external_id) or {}
        variant_ids, inventory_ids = self._index_variants(nodes(node.get('variants')), ctx.payload)
        ctx.replace({'variant_ids': variant_ids, 'inventory_item_ids': inventory_ids})

    @staticmethod
    def _index_variants(variant_nodes: list, payload: ShopifyPayload) -> tuple:
        option_names = [opt['name'] for opt in payload.product.get('productOptions') or []]
        variant_ids, inventory_ids = {}, {}
        for node in variant_nodes:
            selected = {opt['name']: opt['value'] for opt in node.get('selectedOptions') or []}
            if option_names:
                if not all(name in selected for name in option_names):
                    continue
                key = variant_key(selected[name] for name in option_names)
            else:
                key = variant_key(())
            variant_ids[key] = node['id']
            inventory_item = node.get('inventoryItem') or {}
            if inventory_item.get('id'):
                inventory_ids[key] = inventory_item['id']
        return variant_ids, inventory_ids

    @staticmethod
    def _inventory_item_input(variant: dict) -> dict:
        return {
            'sku': variant['sku'],
            'tracked': variant['inventory_quantity'] is not None,
            'measurement': {'weight': variant['weight']},
        }

    def _variant_create_input(self, variant: dict) -> dict:
        data = {
            'optionValues': variant['optionValues'],
            'price': variant['price'],
            'inventoryItem': self._inventory_item_input(variant),
        }
        if variant['compareAtPrice'] is not None:
            data['compareAtPrice'] = variant['compareAtPrice']
        return data

    def _variant_update_input(self, variant: dict, variant_id: str) -> dict:
        return {
            'id': variant_id,
            'price': variant['price'],
            'compareAtPrice': variant['compareAtPrice'],
            'inventoryItem': self._inventory_item_input(variant),
        }
