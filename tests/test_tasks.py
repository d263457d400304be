import json

import pytest
import responses as responses_lib

from catalog_sync.errors import AuthExpired
from catalog_sync.models import SyncRecord
from catalog_sync.tasks import import_catalog_task, push_product_task, sync_catalog_task

WOO_URL = 'https://shop.example.com/wp-json/wc/v3'

CATALOG = [
    {
        'id': 'art-001',
        'title': 'Harbour at Dusk',
        'product_type': 'Prints',
        'status': 'active',
        'price': 4500,
        'weight_grams': 2000,
        'images': [{'url': 'https://img.example.com/harbour.jpg', 'alt': 'Harbour'}],
    },
    {
        'id': 'art-002',
        'title': 'Bronze Heron',
        'product_type': 'Sculptures',
        'status': 'draft',
        'price': 125000,
        'compare_at_price': 150000,
        'weight_grams': 8000,
    },
    {'id': 'art-bad', 'title': 'Broken', 'price': -1},
]


@pytest.fixture()
def catalog_file(tmp_path):
    """Write catalog data to a temp file and return its path."""
    def _make(data):
        p = tmp_path / 'catalog.json'
        p.write_text(json.dumps(data), encoding='utf-8')
        return p
    return _make


@pytest.fixture(autouse=True)
def override_settings(settings, catalog_file):
    settings.CATALOG_DATA_PATH = catalog_file(CATALOG)
    settings.CATALOG_SYNC_STORES = {
        'woo': {
            'platform': 'woocommerce',
            'url': 'https://shop.example.com',
            'consumer_key': 'ck_test',
            'consumer_secret': 'cs_test',
        },
    }
    settings.CATALOG_SYNC_RATE_LIMIT = 100
    settings.CATALOG_SYNC_CONCURRENCY = 1


def add_category_responses():
    responses_lib.add(responses_lib.GET, f'{WOO_URL}/products/categories',
                      json=[{'id': 17, 'name': 'Prints'}, {'id': 18, 'name': 'Sculptures'}], status=200)


def product_posts():
    return [c for c in responses_lib.calls if c.request.method == 'POST' and c.request.url == f'{WOO_URL}/products']


# ---------------------------------------------------------------------------
# Catalog sync → WooCommerce
# ---------------------------------------------------------------------------

@pytest.mark.django_db
@responses_lib.activate
def test_new_products_are_created_and_recorded():
    add_category_responses()
    responses_lib.add(responses_lib.POST, f'{WOO_URL}/products', json={'id': 101}, status=201)
    responses_lib.add(responses_lib.POST, f'{WOO_URL}/products', json={'id': 102}, status=201)

    summary = sync_catalog_task('woo', concurrency=1)

    assert summary == {'succeeded': 2, 'skipped': 0, 'partial': [], 'failed': []}
    assert dict(SyncRecord.objects.values_list('product_id', 'external_id')) == {'art-001': '101', 'art-002': '102'}

    first = json.loads(product_posts()[0].request.body)
    assert first['regular_price'] == '45.00'
    assert first['weight'] == '4.409'
    assert first['status'] == 'publish'
    assert first['categories'] == [{'id': 17}]

    second = json.loads(product_posts()[1].request.body)
    assert second['regular_price'] == '1500.00'
    assert second['sale_price'] == '1250.00'
    assert second['status'] == 'draft'


@pytest.mark.django_db
@responses_lib.activate
def test_unchanged_products_are_not_sent_again():
    add_category_responses()
    responses_lib.add(responses_lib.POST, f'{WOO_URL}/products', json={'id': 101}, status=201)
    responses_lib.add(responses_lib.POST, f'{WOO_URL}/products', json={'id': 102}, status=201)
    sync_catalog_task('woo')
    calls_after_first_run = len(responses_lib.calls)

    summary = sync_catalog_task('woo')

    assert summary['skipped'] == 2
    assert summary['succeeded'] == 0
    assert len(responses_lib.calls) == calls_after_first_run


@pytest.mark.django_db
@responses_lib.activate
def test_changed_product_is_updated_with_put(settings, catalog_file):
    add_category_responses()
    responses_lib.add(responses_lib.POST, f'{WOO_URL}/products', json={'id': 101}, status=201)
    responses_lib.add(responses_lib.POST, f'{WOO_URL}/products', json={'id': 102}, status=201)
    sync_catalog_task('woo')

    changed = [{**CATALOG[0], 'price': 4900}] + CATALOG[1:]
    settings.CATALOG_DATA_PATH = catalog_file(changed)
    responses_lib.add(responses_lib.PUT, f'{WOO_URL}/products/101', json={'id': 101}, status=200)

    summary = sync_catalog_task('woo')

    assert summary['succeeded'] == 1
    assert summary['skipped'] == 1
    put = [c for c in responses_lib.calls if c.request.method == 'PUT']
    assert len(put) == 1
    assert json.loads(put[0].request.body)['regular_price'] == '49.00'
    assert SyncRecord.objects.get(product_id='art-001').external_id == '101'


@pytest.mark.django_db
@responses_lib.activate
def test_rejected_product_is_reported_and_others_continue():
    add_category_responses()
    responses_lib.add(responses_lib.POST, f'{WOO_URL}/products', status=400,
                      json={'code': 'woocommerce_rest_product_invalid_sku', 'message': 'Invalid or duplicated SKU.'})
    responses_lib.add(responses_lib.POST, f'{WOO_URL}/products', json={'id': 102}, status=201)

    summary = sync_catalog_task('woo')

    assert summary['succeeded'] == 1
    assert summary['failed'] == [{
        'id': 'art-001',
        'kind': 'platform_user_error',
        'error': 'woocommerce rejected the request: woocommerce_rest_product_invalid_sku: Invalid or duplicated SKU.',
    }]
    record = SyncRecord.objects.get(product_id='art-001')
    assert record.status == SyncRecord.ERROR
    assert record.external_id is None


@pytest.mark.django_db
@responses_lib.activate
def test_push_single_product():
    add_category_responses()
    responses_lib.add(responses_lib.POST, f'{WOO_URL}/products', json={'id': 102}, status=201)

    summary = push_product_task('woo', 'art-002')

    assert summary['succeeded'] == 1
    assert len(product_posts()) == 1
    assert SyncRecord.objects.get().product_id == 'art-002'


@pytest.mark.django_db
def test_unknown_store_fails_fast(settings):
    settings.CATALOG_SYNC_STORES = {}
    with pytest.raises(AuthExpired, match='No credentials'):
        sync_catalog_task('missing')


# ---------------------------------------------------------------------------
# Catalog import ← WooCommerce
# ---------------------------------------------------------------------------

@pytest.mark.django_db
@responses_lib.activate
def test_import_adds_store_products_to_catalog(settings):
    responses_lib.add(responses_lib.GET, f'{WOO_URL}/products', status=200, json=[
        {'id': 101, 'name': 'Harbour at Dusk', 'type': 'simple', 'status': 'publish', 'regular_price': '49.00',
         'meta_data': [{'key': '_catalog_sync', 'value': {'id': 'art-001'}}]},
        {'id': 555, 'name': 'Night Ferry', 'type': 'simple', 'status': 'publish', 'regular_price': '30.00',
         'categories': [{'id': 17, 'name': 'Prints'}]},
    ])

    summary = import_catalog_task('woo')

    assert summary == {'imported': 2, 'linked': 2, 'failed': [], 'written': 1}
    written = json.loads(settings.CATALOG_DATA_PATH.read_text(encoding='utf-8'))
    assert [entry['id'] for entry in written] == ['art-001', 'art-002', 'art-bad', 'woocommerce-555']
    # The catalog's own entry wins over the store copy.
    assert written[0]['price'] == 4500
    assert written[3]['price'] == 3000
    assert written[3]['product_type'] == 'Prints'
    assert SyncRecord.objects.get(product_id='woocommerce-555').external_id == '555'
