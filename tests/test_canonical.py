import json

import pytest

from catalog_sync.canonical import (
    CanonicalProduct,
    JsonCatalog,
    ProductOption,
    ProductVariant,
    compute_hash,
    load_catalog,
    load_catalog_data,
    merge_into_catalog,
    product_from_dict,
    product_to_dict,
)
from catalog_sync.errors import ValidationError

PRINT = {
    'id': 'art-001',
    'title': 'Harbour at Dusk',
    'description': '<p>Giclée print.</p>',
    'vendor': 'Ana Novak',
    'product_type': 'Prints',
    'tags': ['harbour', 'blue'],
    'status': 'active',
    'price': 4500,
    'weight_grams': 2000,
    'images': [{'url': 'https://img.example.com/harbour.jpg', 'alt': 'Harbour'}],
    'options': [{'name': 'Size', 'values': ['A3', 'A2']}],
    'variants': [
        {'sku': 'HAR-A3', 'price': 4500, 'inventory_quantity': 3, 'option_values': ['A3']},
        {'sku': 'HAR-A2', 'price': 6500, 'inventory_quantity': 0, 'option_values': ['A2']},
    ],
}


@pytest.fixture()
def catalog_file(tmp_path):
    """Write catalog data to a temp file and return its path."""
    def _make(data):
        p = tmp_path / 'catalog.json'
        p.write_text(json.dumps(data), encoding='utf-8')
        return p
    return _make


# ---------------------------------------------------------------------------
# Model invariants
# ---------------------------------------------------------------------------

class TestInvariants:
    def test_valid_product_builds(self):
        product = product_from_dict(PRINT)
        assert product.title == 'Harbour at Dusk'
        assert product.tags == frozenset({'harbour', 'blue'})
        assert product.variants[1].inventory_quantity == 0

    def test_title_required(self):
        with pytest.raises(ValidationError, match='title'):
            CanonicalProduct(id='x', title='')

    def test_negative_price_rejected(self):
        with pytest.raises(ValidationError, match='negative'):
            CanonicalProduct(id='x', title='T', price=-1)

    def test_float_price_rejected(self):
        with pytest.raises(ValidationError, match='integer'):
            CanonicalProduct(id='x', title='T', price=45.0)

    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError, match='status'):
            CanonicalProduct(id='x', title='T', status='published')

    def test_variant_must_select_one_value_per_option(self):
        with pytest.raises(ValidationError, match='selects 0 option values'):
            CanonicalProduct(
                id='x', title='T',
                options=[ProductOption('Size', ('S',))],
                variants=[ProductVariant(sku='S1', price=100)],
            )

    def test_variant_value_must_be_declared(self):
        with pytest.raises(ValidationError, match='undeclared'):
            CanonicalProduct(
                id='x', title='T',
                options=[ProductOption('Size', ('S', 'M'))],
                variants=[ProductVariant(sku='S1', price=100, option_values=('XL',))],
            )

    def test_duplicate_option_combination_rejected(self):
        with pytest.raises(ValidationError, match='duplicate'):
            CanonicalProduct(
                id='x', title='T',
                options=[ProductOption('Size', ('S',))],
                variants=[
                    ProductVariant(sku='S1', price=100, option_values=('S',)),
                    ProductVariant(sku='S2', price=100, option_values=('S',)),
                ],
            )

    def test_single_variant_without_options_is_allowed(self):
        product = CanonicalProduct(id='x', title='T', variants=[ProductVariant(sku='ONLY', price=100)])
        assert product.has_variants
        assert product.option_names() == []

    def test_missing_required_key_is_validation_error(self):
        with pytest.raises(ValidationError, match='malformed'):
            product_from_dict({'id': 'x'})


# ---------------------------------------------------------------------------
# Serialisation and hashing
# ---------------------------------------------------------------------------

class TestSerialisation:
    def test_dict_round_trip(self):
        product = product_from_dict(PRINT)
        assert product_from_dict(product_to_dict(product)) == product

    def test_hash_is_stable_across_tag_order(self):
        a = product_from_dict(PRINT)
        b = product_from_dict({**PRINT, 'tags': ['blue', 'harbour']})
        assert compute_hash(a) == compute_hash(b)

    def test_hash_changes_with_content(self):
        a = product_from_dict(PRINT)
        b = product_from_dict({**PRINT, 'price': 4600})
        assert compute_hash(a) != compute_hash(b)

    def test_hash_is_sha256_hex(self):
        assert len(compute_hash(product_from_dict(PRINT))) == 64


# ---------------------------------------------------------------------------
# Catalog loading
# ---------------------------------------------------------------------------

class TestCatalogLoading:
    def test_duplicates_keep_first_occurrence(self, catalog_file):
        path = catalog_file([PRINT, {**PRINT, 'title': 'Duplicate'}])
        data = load_catalog_data(path)
        assert len(data) == 1
        assert data[0]['title'] == 'Harbour at Dusk'

    def test_invalid_products_are_skipped(self, catalog_file, caplog):
        path = catalog_file([PRINT, {'id': 'bad', 'title': 'Bad', 'price': -5}])
        products = load_catalog(path)
        assert [p.id for p in products] == ['art-001']
        assert 'Skipping product bad' in caplog.text

    def test_json_catalog_lookup(self, catalog_file):
        catalog = JsonCatalog(catalog_file([PRINT, {**PRINT, 'id': 'art-002'}]))
        assert catalog.ids() == ['art-001', 'art-002']
        assert catalog.get('art-002').id == 'art-002'

    def test_json_catalog_missing_id(self, catalog_file):
        catalog = JsonCatalog(catalog_file([PRINT]))
        with pytest.raises(ValidationError, match='not in the catalog'):
            catalog.get('nope')


class TestMergeIntoCatalog:
    def test_new_products_are_appended_and_existing_kept(self, catalog_file):
        path = catalog_file([PRINT])
        imported = [
            product_from_dict({**PRINT, 'title': 'Store copy'}),
            CanonicalProduct(id='woocommerce-555', title='Night Ferry', price=3000),
        ]

        assert merge_into_catalog(path, imported) == 1

        data = load_catalog_data(path)
        assert [entry['id'] for entry in data] == ['art-001', 'woocommerce-555']
        assert data[0]['title'] == 'Harbour at Dusk'
        assert data[1]['price'] == 3000

    def test_overwrite_replaces_in_place(self, catalog_file):
        path = catalog_file([PRINT, {**PRINT, 'id': 'art-002'}])
        assert merge_into_catalog(path, [product_from_dict({**PRINT, 'title': 'Store copy'})], overwrite=True) == 1
        assert [entry['title'] for entry in load_catalog_data(path)] == ['Store copy', 'Harbour at Dusk']

    def test_missing_file_is_created(self, tmp_path):
        path = tmp_path / 'new-catalog.json'
        merge_into_catalog(path, [CanonicalProduct(id='art-009', title='Fresh', price=100)])
        assert [p.id for p in load_catalog(path)] == ['art-009']
