import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Optional

from .errors import ValidationError

logger = logging.getLogger(__name__)

STATUSES = ('active', 'draft', 'archived')


@dataclass(frozen=True)
class ProductImage:
    url: str
    alt: str = ''
    position: int = 0
    # Option value this image illustrates; drives variant image matching.
    option_value: Optional[str] = None


@dataclass(frozen=True)
class ProductOption:
    name: str
    values: tuple = ()


@dataclass(frozen=True)
class ProductVariant:
    sku: str
    price: int
    compare_at_price: Optional[int] = None
    inventory_quantity: int = 0
    weight_grams: int = 0
    option_values: tuple = ()
    image_url: Optional[str] = None


@dataclass(frozen=True)
class CanonicalProduct:
    """
    Platform-agnostic product. Money is in integer minor units, weight in grams.

    `extras` holds, per platform key, fields that platform carries but this
    model has no slot for, so a pull followed by a push does not drop them.
    """

    id: Optional[str]
    title: str
    description: str = ''
    vendor: str = ''
    product_type: str = ''
    tags: frozenset = frozenset()
    status: str = 'draft'
    price: int = 0
    compare_at_price: Optional[int] = None
    weight_grams: int = 0
    images: tuple = ()
    options: tuple = ()
    variants: tuple = ()
    is_digital: bool = False
    extras: dict = field(default_factory=dict, hash=False)

    def __post_init__(self):
        # Normalise list inputs so equality is structural.
        object.__setattr__(self, 'tags', frozenset(self.tags))
        object.__setattr__(self, 'images', tuple(self.images))
        object.__setattr__(self, 'options', tuple(self.options))
        object.__setattr__(self, 'variants', tuple(self.variants))
        validate_product(self)

    @property
    def has_variants(self) -> bool:
        return bool(self.variants)

    def option_names(self) -> list[str]:
        return [option.name for option in self.options]


def validate_product(product: CanonicalProduct):
    """Raise ValidationError when the product breaks a model invariant."""
    label = product.id or product.title or '<unnamed>'

    if not product.title:
        raise ValidationError(f"Product {label}: title is required.")
    if product.status not in STATUSES:
        raise ValidationError(f"Product {label}: unknown status {product.status!r}.")
    _check_amount(label, 'price', product.price)
    _check_amount(label, 'compare_at_price', product.compare_at_price)
    _check_amount(label, 'weight_grams', product.weight_grams)

    declared = [tuple(option.values) for option in product.options]
    seen = set()
    for variant in product.variants:
        _check_amount(label, f'variant {variant.sku} price', variant.price)
        _check_amount(label, f'variant {variant.sku} compare_at_price', variant.compare_at_price)
        _check_amount(label, f'variant {variant.sku} inventory_quantity', variant.inventory_quantity)
        _check_amount(label, f'variant {variant.sku} weight_grams', variant.weight_grams)

        values = tuple(variant.option_values)
        if len(values) != len(declared):
            raise ValidationError(
                f"Product {label}: variant {variant.sku} selects {len(values)} option values "
                f"but {len(declared)} options are declared."
            )
        for position, value in enumerate(values):
            if value not in declared[position]:
                raise ValidationError(
                    f"Product {label}: variant {variant.sku} uses undeclared value {value!r} "
                    f"for option {product.options[position].name!r}."
                )
        if values in seen:
            raise ValidationError(f"Product {label}: duplicate option combination {values!r}.")
        seen.add(values)


def _check_amount(label, name, value):
    if value is None:
        return
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"Product {label}: {name} must be an integer, got {value!r}.")
    if value < 0:
        raise ValidationError(f"Product {label}: {name} must not be negative ({value}).")


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------

def product_from_dict(data: dict) -> CanonicalProduct:
    """Build a CanonicalProduct from its JSON form. Raises ValidationError."""
    try:
        return CanonicalProduct(
            id=data.get('id'),
            title=data['title'],
            description=data.get('description') or '',
            vendor=data.get('vendor') or '',
            product_type=data.get('product_type') or '',
            tags=frozenset(data.get('tags') or ()),
            status=data.get('status', 'draft'),
            price=data.get('price', 0),
            compare_at_price=data.get('compare_at_price'),
            weight_grams=data.get('weight_grams', 0),
            images=tuple(
                ProductImage(
                    url=img['url'],
                    alt=img.get('alt') or '',
                    position=img.get('position', index),
                    option_value=img.get('option_value'),
                )
                for index, img in enumerate(data.get('images') or ())
            ),
            options=tuple(
                ProductOption(name=opt['name'], values=tuple(opt.get('values') or ()))
                for opt in data.get('options') or ()
            ),
            variants=tuple(
                ProductVariant(
                    sku=var.get('sku') or '',
                    price=var['price'],
                    compare_at_price=var.get('compare_at_price'),
                    inventory_quantity=var.get('inventory_quantity', 0),
                    weight_grams=var.get('weight_grams', 0),
                    option_values=tuple(var.get('option_values') or ()),
                    image_url=var.get('image_url'),
                )
                for var in data.get('variants') or ()
            ),
            is_digital=bool(data.get('is_digital', False)),
            extras=dict(data.get('extras') or {}),
        )
    except (KeyError, TypeError, AttributeError) as exc:
        raise ValidationError(f"Product {data.get('id', '<unknown>')!r} is malformed: {exc!r}") from exc


def product_to_dict(product: CanonicalProduct) -> dict:
    return {
        'id': product.id,
        'title': product.title,
        'description': product.description,
        'vendor': product.vendor,
        'product_type': product.product_type,
        'tags': sorted(product.tags),
        'status': product.status,
        'price': product.price,
        'compare_at_price': product.compare_at_price,
        'weight_grams': product.weight_grams,
        'images': [
            {'url': img.url, 'alt': img.alt, 'position': img.position, 'option_value': img.option_value}
            for img in product.images
        ],
        'options': [{'name': opt.name, 'values': list(opt.values)} for opt in product.options],
        'variants': [
            {
                'sku': var.sku,
                'price': var.price,
                'compare_at_price': var.compare_at_price,
                'inventory_quantity': var.inventory_quantity,
                'weight_grams': var.weight_grams,
                'option_values': list(var.option_values),
                'image_url': var.image_url,
            }
            for var in product.variants
        ],
        'is_digital': product.is_digital,
        'extras': product.extras,
    }


def compute_hash(product: CanonicalProduct) -> str:
    """Compute a stable SHA-256 hash of the product for delta sync."""
    serialized = json.dumps(product_to_dict(product), sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(serialized.encode('utf-8')).hexdigest()


# ---------------------------------------------------------------------------
# Catalog source
# ---------------------------------------------------------------------------

def load_catalog_data(path) -> list[dict]:
    """Load catalog JSON from disk and deduplicate by id (first occurrence wins)."""
    with open(path, encoding='utf-8') as f:
        raw_list = json.load(f)

    seen_ids = {}
    for item in raw_list:
        product_id = item.get('id')
        if product_id in seen_ids:
            logger.warning("Duplicate product id %s – keeping first occurrence, skipping duplicate.", product_id)
        else:
            seen_ids[product_id] = item

    return list(seen_ids.values())


def load_catalog(path) -> list[CanonicalProduct]:
    """Load catalog data and return only the products that pass validation."""
    result = []
    for raw in load_catalog_data(path):
        try:
            result.append(product_from_dict(raw))
        except ValidationError as exc:
            logger.warning("Skipping product %s – %s", raw.get('id', '<unknown>'), exc)
    return result


class JsonCatalog:
    """Read-only catalog backed by a JSON file, loaded on first access."""

    def __init__(self, path):
        self._path = path
        self._products = None

    def _load(self) -> dict:
        if self._products is None:
            self._products = {product.id: product for product in load_catalog(self._path)}
        return self._products

    def ids(self) -> list[str]:
        return list(self._load())

    def get(self, product_id: str) -> CanonicalProduct:
        try:
            return self._load()[product_id]
        except KeyError:
            raise ValidationError(f"Product {product_id} is not in the catalog.") from None


def merge_into_catalog(path, products, overwrite: bool = False) -> int:
    """
    Add `products` to the catalog file at `path` and return how many were written.

    Entries already in the file win unless `overwrite` is set. A missing
    file is created.
    """
    try:
        entries = load_catalog_data(path)
    except FileNotFoundError:
        entries = []
    index = {entry.get('id'): position for position, entry in enumerate(entries)}

    written = 0
    for product in products:
        position = index.get(product.id)
        if position is None:
            index[product.id] = len(entries)
            entries.append(product_to_dict(product))
        elif overwrite:
            entries[position] = product_to_dict(product)
        else:
            continue
        written += 1

    with open(path, 'w', encoding='utf-8') as f:
        json.dump(entries, f, indent=2, ensure_ascii=False)
    logger.info("Wrote %d product(s) into %s (%d total).", written, path, len(entries))
    return written
