import json

from ..canonical import CanonicalProduct, ProductOption, ProductVariant
from ..clients.shopify import nodes
from ..converters import (
    from_decimal_string, from_platform_status, grams_to_pounds, to_decimal_string, to_grams, to_platform_status,
)
from ..platforms import SHOPIFY
from ..taxonomy import resolve_category
from .base import (
    SyncContext, ShopifyPayload, Transformer, decode_side_channel, images_side_channel,
    match_variant_images, optional_amount, order_by_skus, restore_images, strip_html,
)

METAFIELD_NAMESPACE = 'catalog_sync'
METAFIELD_KEY = 'canonical'
SEO_DESCRIPTION_LENGTH = 155
# Writable product fields with no canonical slot that survive a pull and push.
PASSTHROUGH_FIELDS = ('handle', 'templateSuffix')


def seo_fields(product: CanonicalProduct) -> dict:
    return {
        'title': f"{product.title} - {product.vendor}" if product.vendor else product.title,
        'description': strip_html(product.description)[:SEO_DESCRIPTION_LENGTH],
    }


def is_default_only(node: dict) -> bool:
    """True for a product carrying only Shopify's implicit 'Default Title' variant."""
    options = node.get('options') or []
    return not options or (
        len(options) == 1 and options[0].get('name') == 'Title'
        and list(options[0].get('values') or []) == ['Default Title']
    )


class ShopifyTransformer(Transformer):
    platform = SHOPIFY

    def _to_platform(self, product: CanonicalProduct, context: SyncContext) -> ShopifyPayload:
        precision = context.weight_precision
        category = resolve_category(product.product_type, default=context.default_category)

        side = {
            'id': product.id,
            'is_digital': product.is_digital,
            'images': images_side_channel(product.images, [image.url for image in product.images], {}),
        }
        foreign = self.foreign_extras(product)
        if foreign:
            side['extras'] = foreign

        product_input = self.own_extras(product)
        product_input.update({
            'title': product.title,
            'vendor': product.vendor,
            'productType': product.product_type,
            'tags': sorted(product.tags),
            'status': 'DRAFT',
        })

        if product.variants:
            product_input['productOptions'] = [
                {'name': option.name, 'values': [{'name': value} for value in option.values]}
                for option in product.options
            ]
            side.update(price=product.price, compare_at_price=product.compare_at_price,
                        weight_grams=product.weight_grams,
                        skus=[variant.sku for variant in product.variants],
                        variant_images={v.sku: v.image_url for v in product.variants if v.image_url})
            variants = tuple(
                {
                    'sku': variant.sku,
                    'option_values': list(variant.option_values),
                    'optionValues': [
                        {'optionName': option.name, 'name': value}
                        for option, value in zip(product.options, variant.option_values)
                    ],
                    'price': to_decimal_string(variant.price),
                    'compareAtPrice': (
                        to_decimal_string(variant.compare_at_price) if variant.compare_at_price is not None else None
                    ),
                    'inventory_quantity': variant.inventory_quantity,
                    'weight': {'unit': 'POUNDS', 'value': float(grams_to_pounds(variant.weight_grams, precision))},
                    'image_url': image,
                }
                for variant, image in zip(product.variants, match_variant_images(product))
            )
        else:
            # Shopify creates one implicit variant; it carries the product price.
            side['variantless'] = True
            side['options'] = [{'name': option.name, 'values': list(option.values)} for option in product.options]
            variants = ({
                'sku': '',
                'option_values': [],
                'optionValues': [],
                'price': to_decimal_string(product.price),
                'compareAtPrice': (
                    to_decimal_string(product.compare_at_price) if product.compare_at_price is not None else None
                ),
                'inventory_quantity': None,
                'weight': {'unit': 'POUNDS', 'value': float(grams_to_pounds(product.weight_grams, precision))},
                'image_url': None,
            },)

        return ShopifyPayload(
            product=product_input,
            variants=variants,
            media=tuple(
                {'originalSource': image.url, 'alt': image.alt, 'mediaContentType': 'IMAGE'}
                for image in product.images
            ),
            description_html=product.description,
            seo=seo_fields(product),
            category_id=category.entry.shopify_gid,
            metafields=({
                'namespace': METAFIELD_NAMESPACE,
                'key': METAFIELD_KEY,
                'type': 'json',
                'value': json.dumps(side, sort_keys=True),
            },),
            final_status=to_platform_status(product.status, SHOPIFY),
        )

    def _from_platform(self, node: dict) -> CanonicalProduct:
        side = decode_side_channel((node.get('metafield') or {}).get('value'))
        variant_nodes = nodes(node.get('variants'))
        variantless = side.get('variantless', False) if side else is_default_only(node)

        if variantless:
            options = tuple(
                ProductOption(name=opt['name'], values=tuple(opt['values'])) for opt in side.get('options') or ()
            )
            default = variant_nodes[0] if variant_nodes else {'price': '0'}
            variants = ()
            price = from_decimal_string(default['price'])
            compare_at_price = optional_amount(default.get('compareAtPrice'))
            weight_grams = self._weight(default)
        else:
            options = tuple(
                ProductOption(name=opt['name'], values=tuple(opt.get('values') or ()))
                for opt in node.get('options') or ()
            )
            explicit = side.get('variant_images') if side else None
            variants = tuple(order_by_skus(
                [self._read_variant(vnode, options, explicit) for vnode in variant_nodes],
                side.get('skus'),
            ))
            price = side['price'] if 'price' in side else (variants[0].price if variants else 0)
            compare_at_price = side.get('compare_at_price')
            weight_grams = side.get('weight_grams', 0)

        media = [
            {'url': media_node['image']['url'], 'alt': media_node.get('alt')}
            for media_node in nodes(node.get('media')) if media_node.get('image')
        ]
        passthrough = {key: node[key] for key in PASSTHROUGH_FIELDS if node.get(key)}

        return CanonicalProduct(
            id=side.get('id'),
            title=node['title'],
            description=node.get('descriptionHtml') or '',
            vendor=node.get('vendor') or '',
            product_type=node.get('productType') or '',
            tags=frozenset(node.get('tags') or ()),
            status=from_platform_status(node['status'], SHOPIFY),
            price=price,
            compare_at_price=compare_at_price,
            weight_grams=weight_grams,
            images=restore_images(media, side.get('images')),
            options=options,
            variants=variants,
            is_digital=bool(side.get('is_digital', False)),
            extras=self.merge_extras(side, passthrough),
        )

    def _read_variant(self, vnode: dict, options: tuple, explicit) -> ProductVariant:
        selected = {opt['name']: opt['value'] for opt in vnode.get('selectedOptions') or []}
        sku = vnode.get('sku') or ''
        if explicit is None:
            media = nodes(vnode.get('media'))
            image_url = media[0]['image']['url'] if media and media[0].get('image') else None
        else:
            image_url = explicit.get(sku)
        return ProductVariant(
            sku=sku,
            price=from_decimal_string(vnode['price']),
            compare_at_price=optional_amount(vnode.get('compareAtPrice')),
            inventory_quantity=int(vnode.get('inventoryQuantity') or 0),
            weight_grams=self._weight(vnode),
            option_values=tuple(selected[option.name] for option in options),
            image_url=image_url,
        )

    @staticmethod
    def _weight(vnode: dict) -> int:
        measurement = (vnode.get('inventoryItem') or {}).get('measurement') or {}
        weight = measurement.get('weight')
        if not weight or weight.get('value') is None:
            return 0
        return to_grams(weight['value'], weight['unit'])
