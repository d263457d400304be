from dataclasses import dataclass

from django.utils.text import slugify

from ..canonical import CanonicalProduct, product_from_dict, product_to_dict
from ..converters import from_platform_status, to_platform_status
from ..errors import ValidationError
from ..image_proxy import EXTENSION_REQUIRED
from ..platforms import GALLERY_STORE
from .base import (
    SIDE_CHANNEL_KEY, GalleryStorePayload, SyncContext, Transformer, decode_side_channel, images_side_channel,
    restore_images,
)

ARTWORK_FIELDS = frozenset({'slug', 'title', 'artist', 'object_type', 'description', 'tags', 'status', 'image',
                            SIDE_CHANNEL_KEY})
# Canonical fields an artwork entry has no slot for.
SIDE_FIELDS = ('price', 'compare_at_price', 'weight_grams', 'options', 'variants', 'is_digital')


@dataclass(frozen=True)
class GalleryStoreRecord:
    """One artwork entry together with the collection file it lives in."""

    collection: str
    artwork: dict


def artwork_slug(product: CanonicalProduct) -> str:
    return slugify(product.id or product.title)


class GalleryStoreTransformer(Transformer):
    """
    Artwork entries in a collection JSON file. Only the first image is
    native (`image`); the rest travel in the side channel.
    """

    platform = GALLERY_STORE
    image_policy = EXTENSION_REQUIRED

    def _to_platform(self, product: CanonicalProduct, context: SyncContext) -> GalleryStorePayload:
        collection = context.collection
        slug = artwork_slug(product)
        if context.external_id:
            collection, _, slug = context.external_id.partition('/')
        if not collection:
            raise ValidationError(f"Product {product.id}: no gallery collection to publish into.")

        rewrites = {}
        image_urls = [self.image_url(image.url, context, rewrites) for image in product.images]
        canonical = product_to_dict(product)
        side = {'id': product.id, **{name: canonical[name] for name in SIDE_FIELDS}}
        side['images'] = images_side_channel(product.images, image_urls, rewrites)
        side['image_alts'] = [image.alt for image in product.images]
        foreign = self.foreign_extras(product)
        if foreign:
            side['extras'] = foreign

        artwork = self.own_extras(product)
        artwork.update({
            'slug': slug,
            'title': product.title,
            'artist': product.vendor,
            'object_type': product.product_type,
            'description': product.description,
            'tags': sorted(product.tags),
            'status': to_platform_status(product.status, GALLERY_STORE),
            'image': image_urls[0] if image_urls else '',
            SIDE_CHANNEL_KEY: side,
        })
        return GalleryStorePayload(collection=collection, slug=slug, artwork=artwork)

    def _from_platform(self, record: GalleryStoreRecord) -> CanonicalProduct:
        artwork = record.artwork
        side = decode_side_channel(artwork.get(SIDE_CHANNEL_KEY))

        if side.get('images') is not None:
            alts = side.get('image_alts') or []
            platform_images = [
                {'url': image['url'], 'alt': alts[index] if index < len(alts) else ''}
                for index, image in enumerate(side['images'])
            ]
        elif artwork.get('image'):
            platform_images = [{'url': artwork['image'], 'alt': artwork.get('title', '')}]
        else:
            platform_images = []

        # Options and variants only exist in the side channel; reuse the
        # canonical parser for them so validation matches catalog loading.
        structure = product_from_dict({
            'title': artwork['title'],
            'price': side.get('price', 0),
            'compare_at_price': side.get('compare_at_price'),
            'weight_grams': side.get('weight_grams', 0),
            'options': side.get('options') or [],
            'variants': side.get('variants') or [],
        })
        passthrough = {key: value for key, value in artwork.items() if key not in ARTWORK_FIELDS}

        return CanonicalProduct(
            id=side.get('id'),
            title=artwork['title'],
            description=artwork.get('description') or '',
            vendor=artwork.get('artist') or '',
            product_type=artwork.get('object_type') or '',
            tags=frozenset(artwork.get('tags') or ()),
            status=from_platform_status(artwork.get('status', 'published'), GALLERY_STORE),
            price=structure.price,
            compare_at_price=structure.compare_at_price,
            weight_grams=structure.weight_grams,
            images=restore_images(platform_images, side.get('images')),
            options=structure.options,
            variants=structure.variants,
            is_digital=bool(side.get('is_digital', False)),
            extras=self.merge_extras(side, passthrough),
        )
