from ..platforms import GALLERY_STORE, SHOPIFY, WOOCOMMERCE
from .gallery import GalleryStoreClient
from .shopify import ShopifyClient
from .woocommerce import WooCommerceClient

CLIENT_TYPES = {
    WOOCOMMERCE: WooCommerceClient,
    SHOPIFY: ShopifyClient,
    GALLERY_STORE: GalleryStoreClient,
}


def client_for(credentials, **kwargs):
    """Build the platform client matching a credential bundle."""
    return CLIENT_TYPES[credentials.platform](credentials, **kwargs)
