import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from ..canonical import CanonicalProduct, ProductImage
from ..converters import from_decimal_string
from ..errors import InvalidAmount, MalformedRecord, UnmappedStatus, ValidationError
from ..image_proxy import ACCEPT_ANY, ImagePolicy, TemplateImageProxy
from ..platforms import GALLERY_STORE, SHOPIFY, WOOCOMMERCE

logger = logging.getLogger(__name__)

# Key under which each platform stores canonical fields it has no slot for.
SIDE_CHANNEL_KEY = '_catalog_sync'

_TAG_RE = re.compile(r'<[^>]*>')


# ---------------------------------------------------------------------------
# Payloads (one concrete type per platform, checked on construction)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WooCommercePayload:
    product: dict
    variations: tuple = ()
    platform: str = field(default=WOOCOMMERCE, init=False)

    def __post_init__(self):
        if not self.product.get('name'):
            raise ValidationError('WooCommerce payload needs a product name.')
        if self.product.get('type') not in ('simple', 'variable'):
            raise ValidationError(f"Unsupported WooCommerce product type {self.product.get('type')!r}.")
        if self.product['type'] == 'variable' and not self.variations:
            raise ValidationError('Variable WooCommerce product needs at least one variation.')
        for variation in self.variations:
            if not variation.get('attributes'):
                raise ValidationError(f"Variation {variation.get('sku')!r} has no attributes.")

    @property
    def is_variable(self) -> bool:
        return self.product['type'] == 'variable'


@dataclass(frozen=True)
class ShopifyPayload:
    product: dict
    variants: tuple
    media: tuple = ()
    description_html: str = ''
    seo: dict = field(default_factory=dict)
    category_id: Optional[str] = None
    metafields: tuple = ()
    final_status: str = 'DRAFT'
    platform: str = field(default=SHOPIFY, init=False)

    def __post_init__(self):
        if not self.product.get('title'):
            raise ValidationError('Shopify payload needs a product title.')
        if self.product.get('status') != 'DRAFT':
            raise ValidationError('Shopify products are created as DRAFT and activated last.')
        if not self.variants:
            raise ValidationError('Shopify payload needs at least one variant.')
        if self.final_status not in ('ACTIVE', 'DRAFT', 'ARCHIVED'):
            raise ValidationError(f"Unsupported Shopify status {self.final_status!r}.")


@dataclass(frozen=True)
class GalleryStorePayload:
    collection: str
    slug: str
    artwork: dict
    platform: str = field(default=GALLERY_STORE, init=False)

    def __post_init__(self):
        if not self.collection or not self.slug:
            raise ValidationError('Gallery store payload needs a collection and a slug.')
        if not self.artwork.get('title'):
            raise ValidationError('Gallery store artwork needs a title.')

    @property
    def external_id(self) -> str:
        return f"{self.collection}/{self.slug}"


@dataclass
class SyncContext:
    """Per-push inputs a transformer cannot derive from the product itself."""

    external_id: Optional[str] = None
    category_ids: dict = field(default_factory=dict)
    image_proxy: Optional[TemplateImageProxy] = None
    weight_precision: int = 3
    default_category: Optional[str] = None
    collection: Optional[str] = None

    def proxy(self) -> TemplateImageProxy:
        if self.image_proxy is None:
            self.image_proxy = TemplateImageProxy()
        return self.image_proxy


# ---------------------------------------------------------------------------
# Transformer contract
# ---------------------------------------------------------------------------

class Transformer(ABC):
    """
    Maps a CanonicalProduct to one platform's payload and back.

    Failures leave only as ValidationError subclasses: anything a malformed
    record trips over inside the mapping is reported as MalformedRecord.
    """

    platform: str = ''
    image_policy: ImagePolicy = ACCEPT_ANY

    def to_platform(self, product: CanonicalProduct, context: Optional[SyncContext] = None):
        context = context or SyncContext()
        try:
            return self._to_platform(product, context)
        except ValidationError:
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise ValidationError(f"Cannot build {self.platform} payload for {product.id}: {exc!r}") from exc

    def from_platform(self, record) -> CanonicalProduct:
        try:
            return self._from_platform(record)
        except (MalformedRecord, UnmappedStatus, InvalidAmount):
            raise
        except ValidationError as exc:
            raise MalformedRecord(self.platform, str(exc)) from exc
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise MalformedRecord(self.platform, f"{type(exc).__name__}: {exc}") from exc

    @abstractmethod
    def _to_platform(self, product: CanonicalProduct, context: SyncContext):
        ...

    @abstractmethod
    def _from_platform(self, record) -> CanonicalProduct:
        ...

    def image_url(self, url: str, context: SyncContext, rewrites: dict) -> str:
        """Route `url` through the image proxy when this platform would reject it."""
        if not self.image_policy.requires_proxy(url):
            return url
        proxied = context.proxy().rewrite(url)
        rewrites[proxied] = url
        logger.debug("Image %s proxied for %s as %s.", url, self.platform, proxied)
        return proxied

    def foreign_extras(self, product: CanonicalProduct) -> dict:
        return {key: value for key, value in product.extras.items() if key != self.platform and value}

    def own_extras(self, product: CanonicalProduct) -> dict:
        return dict(product.extras.get(self.platform) or {})

    def merge_extras(self, side: dict, passthrough: dict) -> dict:
        extras = dict(side.get('extras') or {})
        if passthrough:
            extras[self.platform] = passthrough
        return extras


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def match_variant_images(product: CanonicalProduct) -> list[Optional[str]]:
    """
    Image URL per variant, aligned with product.variants.

    An explicit variant image_url wins; otherwise the first image declared
    for one of the variant's option values. Variants with neither get None
    and keep showing the product-level image.
    """
    matched = []
    for variant in product.variants:
        url = variant.image_url
        if url is None:
            for image in product.images:
                if image.option_value is not None and image.option_value in variant.option_values:
                    url = image.url
                    break
        matched.append(url)
    return matched


def images_side_channel(images: list[ProductImage], emitted_urls: list[str], rewrites: dict) -> list[dict]:
    """Per-image facts a platform drops: position, option value and pre-proxy URL."""
    return [
        {'url': rewrites.get(url, image.url), 'position': image.position, 'option_value': image.option_value}
        for image, url in zip(images, emitted_urls)
    ]


def restore_images(platform_images: list[dict], side_images: Optional[list]) -> tuple:
    """Rebuild ProductImages from (url, alt) pairs plus the side-channel list."""
    result = []
    side_images = side_images or []
    for index, image in enumerate(platform_images):
        side = side_images[index] if index < len(side_images) else {}
        result.append(ProductImage(
            url=side.get('url') or image['url'],
            alt=image.get('alt') or '',
            position=side.get('position', index),
            option_value=side.get('option_value'),
        ))
    return tuple(result)


def order_by_skus(variants: list, sku_order: Optional[list]) -> list:
    if not sku_order:
        return variants
    rank = {sku: index for index, sku in enumerate(sku_order)}
    return sorted(variants, key=lambda variant: rank.get(variant.sku, len(rank)))


def strip_html(text: str) -> str:
    return _TAG_RE.sub('', text or '').strip()


def decode_side_channel(value) -> dict:
    """Side-channel values may arrive as a dict or as serialised JSON."""
    if not value:
        return {}
    if isinstance(value, str):
        value = json.loads(value)
    if not isinstance(value, dict):
        raise MalformedRecord('side-channel', f"expected an object, got {type(value).__name__}")
    return value


def optional_amount(value) -> Optional[int]:
    if value is None or value == '':
        return None
    return from_decimal_string(value)
