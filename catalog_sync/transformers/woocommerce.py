from dataclasses import dataclass

from ..canonical import CanonicalProduct, ProductOption, ProductVariant
from ..converters import from_platform_status, grams_to_pounds, to_decimal_string, to_grams, to_platform_status
from ..image_proxy import EXTENSION_REQUIRED
from ..platforms import WOOCOMMERCE
from ..taxonomy import resolve_category
from .base import (
    SIDE_CHANNEL_KEY, SyncContext, Transformer, WooCommercePayload, decode_side_channel,
    images_side_channel, match_variant_images, optional_amount, order_by_skus, restore_images,
)

# Fields WooCommerce computes itself; never echoed back on write.
READ_ONLY_FIELDS = frozenset({
    'id', 'permalink', 'date_created', 'date_created_gmt', 'date_modified', 'date_modified_gmt',
    'price', 'price_html', 'on_sale', 'purchasable', 'total_sales', 'related_ids', 'average_rating',
    'rating_count', 'variations', 'has_options', 'backorders_allowed', 'backordered',
    'shipping_required', 'shipping_taxable', 'shipping_class_id', '_links',
})
PRODUCT_FIELDS = frozenset({
    'name', 'type', 'status', 'description', 'virtual', 'weight', 'tags', 'categories', 'images',
    'attributes', 'meta_data', 'regular_price', 'sale_price',
})
STOCK_FIELDS = frozenset({'sku', 'manage_stock', 'stock_quantity', 'stock_status'})
VARIATION_FIELDS = STOCK_FIELDS | {'regular_price', 'sale_price', 'weight', 'attributes', 'image'}


@dataclass(frozen=True)
class WooCommerceRecord:
    """A product as read from the REST API plus its variations."""

    product: dict
    variations: tuple = ()


def price_fields(price: int, compare_at_price) -> dict:
    """WooCommerce models compare-at as regular price with the live price as sale price."""
    if compare_at_price is None:
        return {'regular_price': to_decimal_string(price), 'sale_price': ''}
    return {'regular_price': to_decimal_string(compare_at_price), 'sale_price': to_decimal_string(price)}


def read_prices(data: dict) -> tuple:
    regular = optional_amount(data.get('regular_price'))
    sale = optional_amount(data.get('sale_price'))
    if sale is not None:
        return sale, regular
    return regular or 0, None


def stock_fields(quantity: int) -> dict:
    return {
        'manage_stock': True,
        'stock_quantity': quantity,
        'stock_status': 'instock' if quantity > 0 else 'outofstock',
    }


def option_key(attributes: list, option_names: list) -> tuple:
    """Option tuple of a variation, ordered like the product's options."""
    by_name = {attr['name']: attr['option'] for attr in attributes}
    return tuple(by_name[name] for name in option_names)


class WooCommerceTransformer(Transformer):
    platform = WOOCOMMERCE
    image_policy = EXTENSION_REQUIRED

    def _to_platform(self, product: CanonicalProduct, context: SyncContext) -> WooCommercePayload:
        own = self.own_extras(product)
        variation_extras = own.pop('variations', {})
        extra_meta = own.pop('meta_data', [])
        extra_attributes = own.pop('attributes', [])

        variable = bool(product.options and product.variants)
        single = bool(product.variants) and not product.options
        rewrites = {}
        image_urls = [self.image_url(image.url, context, rewrites) for image in product.images]
        category = resolve_category(product.product_type, default=context.default_category)
        category_id = context.category_ids.get(category.name)

        side = {
            'id': product.id,
            'vendor': product.vendor,
            'product_type': product.product_type,
            'images': images_side_channel(product.images, image_urls, rewrites),
        }
        foreign = self.foreign_extras(product)
        if foreign:
            side['extras'] = foreign

        body = dict(own)
        body.update({
            'name': product.title,
            'type': 'variable' if variable else 'simple',
            'status': to_platform_status(product.status, WOOCOMMERCE),
            'description': product.description,
            'virtual': product.is_digital,
            'weight': str(grams_to_pounds(product.weight_grams, context.weight_precision)),
            'tags': [{'name': tag} for tag in sorted(product.tags)],
            'categories': [{'id': category_id}] if category_id is not None else [{'name': category.name}],
            'images': [{'src': url, 'alt': image.alt} for image, url in zip(product.images, image_urls)],
            'attributes': [
                {'name': option.name, 'position': position, 'visible': True,
                 'variation': variable, 'options': list(option.values)}
                for position, option in enumerate(product.options)
            ] + list(extra_attributes),
        })

        variations = []
        if variable:
            side.update(price=product.price, compare_at_price=product.compare_at_price,
                        skus=[variant.sku for variant in product.variants])
            explicit = {}
            for variant, image in zip(product.variants, match_variant_images(product)):
                variation = dict(variation_extras.get(variant.sku) or {})
                variation.update(sku=variant.sku, weight=str(grams_to_pounds(variant.weight_grams, context.weight_precision)))
                variation.update(price_fields(variant.price, variant.compare_at_price))
                variation.update(stock_fields(variant.inventory_quantity))
                variation['attributes'] = [
                    {'name': option.name, 'option': value}
                    for option, value in zip(product.options, variant.option_values)
                ]
                if image:
                    variation['image'] = {'src': self.image_url(image, context, rewrites)}
                if variant.image_url:
                    explicit[variant.sku] = variant.image_url
                variations.append(variation)
            side['variant_images'] = explicit
        elif single:
            variant = product.variants[0]
            side.update(single_variant=True, price=product.price, compare_at_price=product.compare_at_price,
                        weight_grams=product.weight_grams, variant_image_url=variant.image_url)
            body.update(price_fields(variant.price, variant.compare_at_price))
            body.update(stock_fields(variant.inventory_quantity))
            body['sku'] = variant.sku
            body['weight'] = str(grams_to_pounds(variant.weight_grams, context.weight_precision))
        else:
            side['variantless'] = True
            body.update(price_fields(product.price, product.compare_at_price))

        body['meta_data'] = list(extra_meta) + [{'key': SIDE_CHANNEL_KEY, 'value': side}]
        return WooCommercePayload(product=body, variations=tuple(variations))

    def _from_platform(self, record) -> CanonicalProduct:
        if isinstance(record, dict):
            record = WooCommerceRecord(product=record)
        data = record.product

        side, extra_meta = {}, []
        for entry in data.get('meta_data') or []:
            if entry.get('key') == SIDE_CHANNEL_KEY:
                side = decode_side_channel(entry.get('value'))
            else:
                extra_meta.append(entry)

        variable = data.get('type') == 'variable'
        single = bool(side.get('single_variant'))
        attributes = sorted(data.get('attributes') or [], key=lambda attr: attr.get('position', 0))
        option_attributes = [attr for attr in attributes if attr.get('variation')] if variable else attributes
        extra_attributes = [attr for attr in attributes if not attr.get('variation')] if variable else []
        options = tuple(
            ProductOption(name=attr['name'], values=tuple(attr.get('options') or ()))
            for attr in option_attributes
        )

        images = restore_images(
            [{'url': image['src'], 'alt': image.get('alt')} for image in data.get('images') or []],
            side.get('images'),
        )
        categories = data.get('categories') or []
        product_type = side['product_type'] if 'product_type' in side else (categories[0]['name'] if categories else '')
        weight_grams = to_grams(data.get('weight') or 0, 'lb')

        passthrough = {}
        if variable:
            variants, variation_extras = self._read_variations(record.variations, options, side)
            variants = order_by_skus(variants, side.get('skus'))
            price = side['price'] if 'price' in side else optional_amount(data.get('price')) or 0
            compare_at_price = side.get('compare_at_price')
            if variation_extras:
                passthrough['variations'] = variation_extras
            consumed = PRODUCT_FIELDS
        elif single:
            variant_price, variant_compare = read_prices(data)
            variants = [ProductVariant(
                sku=data.get('sku') or '',
                price=variant_price,
                compare_at_price=variant_compare,
                inventory_quantity=int(data.get('stock_quantity') or 0),
                weight_grams=weight_grams,
                image_url=side.get('variant_image_url'),
            )]
            price, compare_at_price = side['price'], side.get('compare_at_price')
            weight_grams = side.get('weight_grams', weight_grams)
            consumed = PRODUCT_FIELDS | STOCK_FIELDS
        else:
            variants = []
            price, compare_at_price = read_prices(data)
            consumed = PRODUCT_FIELDS

        passthrough.update({
            key: value for key, value in data.items()
            if key not in consumed and key not in READ_ONLY_FIELDS
        })
        if extra_meta:
            passthrough['meta_data'] = extra_meta
        if extra_attributes:
            passthrough['attributes'] = extra_attributes

        return CanonicalProduct(
            id=side.get('id'),
            title=data['name'],
            description=data.get('description') or '',
            vendor=side.get('vendor', ''),
            product_type=product_type,
            tags=frozenset(tag['name'] for tag in data.get('tags') or []),
            status=from_platform_status(data['status'], WOOCOMMERCE),
            price=price,
            compare_at_price=compare_at_price,
            weight_grams=weight_grams,
            images=images,
            options=options,
            variants=tuple(variants),
            is_digital=bool(data.get('virtual', False)),
            extras=self.merge_extras(side, passthrough),
        )

    def _read_variations(self, variations, options, side) -> tuple:
        option_names = [option.name for option in options]
        explicit = side.get('variant_images')
        variants, extras = [], {}
        for variation in variations:
            price, compare_at_price = read_prices(variation)
            sku = variation.get('sku') or ''
            image_src = (variation.get('image') or {}).get('src')
            if explicit is None:
                image_url = image_src
            else:
                image_url = explicit.get(sku)
            variants.append(ProductVariant(
                sku=sku,
                price=price,
                compare_at_price=compare_at_price,
                inventory_quantity=int(variation.get('stock_quantity') or 0),
                weight_grams=to_grams(variation.get('weight') or 0, 'lb'),
                option_values=option_key(variation['attributes'], option_names),
                image_url=image_url,
            ))
            unknown = {
                key: value for key, value in variation.items()
                if key not in VARIATION_FIELDS and key not in READ_ONLY_FIELDS
            }
            if unknown:
                extras[sku] = unknown
        return variants, extras
