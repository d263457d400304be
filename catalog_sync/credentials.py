from dataclasses import dataclass
from typing import Optional

from . import conf
from .errors import AuthExpired
from .platforms import GALLERY_STORE, SHOPIFY, WOOCOMMERCE


@dataclass(frozen=True)
class WooCommerceCredentials:
    url: str
    consumer_key: str
    consumer_secret: str
    rate_limit: Optional[int] = None
    platform: str = WOOCOMMERCE


@dataclass(frozen=True)
class ShopifyCredentials:
    shop: str
    access_token: str
    api_version: str = '2024-10'
    rate_limit: Optional[int] = None
    platform: str = SHOPIFY


@dataclass(frozen=True)
class GalleryStoreCredentials:
    repo: str
    token: str
    collection: str
    branch: str = 'main'
    data_dir: str = 'public/data'
    rate_limit: Optional[int] = None
    platform: str = GALLERY_STORE


CREDENTIAL_TYPES = {
    WOOCOMMERCE: WooCommerceCredentials,
    SHOPIFY: ShopifyCredentials,
    GALLERY_STORE: GalleryStoreCredentials,
}


class SettingsCredentialStore:
    """
    Credential store backed by the CATALOG_SYNC_STORES setting.

    Each entry maps a store id to a dict with a `platform` key plus the
    fields of that platform's credential class.
    """

    def get_credentials(self, store_id: str):
        try:
            bundle = dict(conf.stores()[store_id])
        except KeyError:
            raise AuthExpired(f"No credentials configured for store {store_id!r}.") from None

        platform = bundle.pop('platform', None)
        try:
            credential_type = CREDENTIAL_TYPES[platform]
        except KeyError:
            raise AuthExpired(f"Store {store_id!r} has unknown platform {platform!r}.") from None
        try:
            return credential_type(**bundle)
        except TypeError as exc:
            raise AuthExpired(f"Store {store_id!r} credentials are incomplete: {exc}") from exc

    def stores_for(self, platform: str) -> list[str]:
        return [store_id for store_id, bundle in conf.stores().items() if bundle.get('platform') == platform]
