from ..platforms import GALLERY_STORE, SHOPIFY, WOOCOMMERCE
from .base import (
    GalleryStorePayload, ShopifyPayload, SyncContext, Transformer, WooCommercePayload, match_variant_images,
)
from .gallery import GalleryStoreRecord, GalleryStoreTransformer
from .shopify import ShopifyTransformer
from .woocommerce import WooCommerceRecord, WooCommerceTransformer

TRANSFORMERS = {
    WOOCOMMERCE: WooCommerceTransformer,
    SHOPIFY: ShopifyTransformer,
    GALLERY_STORE: GalleryStoreTransformer,
}


def get_transformer(platform: str) -> Transformer:
    try:
        return TRANSFORMERS[platform]()
    except KeyError:
        raise ValueError(f"No transformer for platform {platform!r}.") from None


__all__ = [
    'GalleryStorePayload', 'GalleryStoreRecord', 'GalleryStoreTransformer', 'ShopifyPayload',
    'ShopifyTransformer', 'SyncContext', 'Transformer', 'WooCommercePayload', 'WooCommerceRecord',
    'WooCommerceTransformer', 'get_transformer', 'match_variant_images',
]
