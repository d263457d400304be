import threading
import time

import pytest
import responses as responses_lib

from catalog_sync.bulk import BulkResult, run_bulk
from catalog_sync.canonical import CanonicalProduct
from catalog_sync.clients.http import RetryPolicy
from catalog_sync.clients.shopify import ShopifyClient
from catalog_sync.credentials import ShopifyCredentials
from catalog_sync.errors import PartialStepFailure, TransientNetworkError, ValidationError
from catalog_sync.models import SyncRecord
from catalog_sync.orchestrator import PushOrchestrator, PushOutcome
from catalog_sync.pipeline import ShopifyPipeline

PRODUCT_IDS = [f'art-{n:03d}' for n in range(1, 11)]
SHOPIFY_URL = 'https://demo-gallery.myshopify.com/admin/api/2024-10/graphql.json'


class FakeCatalog:
    def get(self, product_id):
        if product_id == 'missing':
            raise ValidationError(f"Product {product_id} is not in the catalog.")
        return CanonicalProduct(id=product_id, title=f'Artwork {product_id}', price=1000)


class FakeOrchestrator:
    """Pushes succeed unless the product id is listed in `errors`."""

    platform = 'woocommerce'

    def __init__(self, errors=None, delay=0.0, partial=(), skipped=()):
        self.errors = errors or {}
        self.delay = delay
        self.partial = set(partial)
        self.skipped = set(skipped)
        self.pushed = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def push(self, product, skip_unchanged=False):
        with self._lock:
            self.pushed.append(product.id)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            if product.id in self.errors:
                raise self.errors[product.id]
            action = 'skipped' if product.id in self.skipped else 'create'
            return PushOutcome(product.id, self.platform, '1', action, partial=product.id in self.partial)
        finally:
            with self._lock:
                self.in_flight -= 1


# ---------------------------------------------------------------------------
# Per-item failure isolation
# ---------------------------------------------------------------------------

class TestRunBulk:
    def test_one_validation_error_does_not_stop_the_run(self):
        orchestrator = FakeOrchestrator(errors={'art-004': ValidationError('price is missing')})
        result = run_bulk(PRODUCT_IDS, 'woocommerce', 1, catalog=FakeCatalog(), orchestrator=orchestrator)

        assert len(result.succeeded) == 9
        assert list(result.failed) == ['art-004']
        assert isinstance(result.failed['art-004'], ValidationError)
        # Products after the failing one still ran, in order.
        assert orchestrator.pushed == PRODUCT_IDS

    def test_concurrent_run_collects_every_result(self):
        errors = {
            'art-002': TransientNetworkError('timeout'),
            'art-007': PartialStepFailure('inventory_set', TransientNetworkError('timeout'), 'variants_updated'),
        }
        orchestrator = FakeOrchestrator(errors=errors, delay=0.01)
        result = run_bulk(PRODUCT_IDS, 'woocommerce', 4, catalog=FakeCatalog(), orchestrator=orchestrator)

        assert sorted(result.succeeded) == sorted(set(PRODUCT_IDS) - set(errors))
        assert set(result.failed) == set(errors)
        assert sorted(orchestrator.pushed) == sorted(PRODUCT_IDS)

    def test_concurrency_is_bounded(self):
        orchestrator = FakeOrchestrator(delay=0.02)
        run_bulk(PRODUCT_IDS, 'woocommerce', 3, catalog=FakeCatalog(), orchestrator=orchestrator)
        assert orchestrator.max_in_flight <= 3

    def test_unexpected_exception_is_captured(self):
        orchestrator = FakeOrchestrator(errors={'art-001': RuntimeError('bug')})
        result = run_bulk(PRODUCT_IDS[:2], 'woocommerce', 1, catalog=FakeCatalog(), orchestrator=orchestrator)
        assert result.succeeded == ['art-002']
        assert isinstance(result.failed['art-001'], RuntimeError)

    def test_missing_catalog_entry_is_a_failure(self):
        result = run_bulk(['missing', 'art-001'], 'woocommerce', 1,
                          catalog=FakeCatalog(), orchestrator=FakeOrchestrator())
        assert result.succeeded == ['art-001']
        assert isinstance(result.failed['missing'], ValidationError)

    def test_partial_and_skipped_are_reported(self):
        orchestrator = FakeOrchestrator(partial={'art-001'}, skipped={'art-002'})
        result = run_bulk(PRODUCT_IDS[:3], 'woocommerce', 1, catalog=FakeCatalog(), orchestrator=orchestrator)
        assert result.succeeded == ['art-001', 'art-003']
        assert result.partial == ['art-001']
        assert result.skipped == ['art-002']

    def test_platform_must_match_orchestrator(self):
        with pytest.raises(ValueError):
            run_bulk(PRODUCT_IDS, 'shopify', 1, catalog=FakeCatalog(), orchestrator=FakeOrchestrator())

    def test_concurrency_defaults_to_setting(self, settings):
        settings.CATALOG_SYNC_CONCURRENCY = 2
        orchestrator = FakeOrchestrator(delay=0.02)
        run_bulk(PRODUCT_IDS, 'woocommerce', catalog=FakeCatalog(), orchestrator=orchestrator)
        assert orchestrator.max_in_flight <= 2

    def test_catalog_and_orchestrator_are_required_keywords(self):
        with pytest.raises(TypeError):
            run_bulk(PRODUCT_IDS, 'woocommerce', 1)
        with pytest.raises(TypeError):
            run_bulk(PRODUCT_IDS, 'woocommerce', 1, FakeCatalog(), FakeOrchestrator())


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------

class TestSummary:
    def test_summary_lists_every_failure_with_kind(self):
        result = BulkResult(
            succeeded=['a', 'b'],
            failed={'c': ValidationError('bad price'), 'd': RuntimeError('bug')},
            partial=['b'],
        )
        assert result.summary() == {
            'succeeded': 2,
            'skipped': 0,
            'partial': ['b'],
            'failed': [
                {'id': 'c', 'kind': 'validation_error', 'error': 'bad price'},
                {'id': 'd', 'kind': 'RuntimeError', 'error': 'bug'},
            ],
        }

    def test_step_failure_names_the_step_and_its_cause(self):
        exc = PartialStepFailure('inventory_set', TransientNetworkError('timeout'), 'variants_updated')
        entry, = BulkResult(failed={'art-001': exc}).summary()['failed']

        assert entry['kind'] == 'partial_step_failure'
        assert entry['step'] == 'inventory_set'
        assert entry['cause'] == 'transient_network_error'


# ---------------------------------------------------------------------------
# Real pipeline behind the bulk run
# ---------------------------------------------------------------------------

@pytest.mark.django_db
@responses_lib.activate
def test_shopify_rejection_keeps_its_kind_in_summary(settings):
    settings.CATALOG_SYNC_DEFAULT_CATEGORY = 'Artwork'
    responses_lib.add(responses_lib.POST, SHOPIFY_URL, status=200, json={'data': {'productCreate': {
        'product': None,
        'userErrors': [{'field': ['title'], 'message': "can't be blank"}],
    }}})
    client = ShopifyClient(ShopifyCredentials('demo-gallery', 'shpat_test'),
                           retry_policy=RetryPolicy(jitter=0), rate_limit=100)
    orchestrator = PushOrchestrator('shopify', ShopifyPipeline(client, poll_attempts=1, poll_interval=0))

    result = run_bulk(['art-001'], 'shopify', 1, catalog=FakeCatalog(), orchestrator=orchestrator)

    assert result.summary()['failed'] == [{
        'id': 'art-001',
        'kind': 'platform_user_error',
        'error': "shopify rejected the request: title: can't be blank",
    }]
    assert len(responses_lib.calls) == 1
    record = SyncRecord.objects.get(product_id='art-001', platform='shopify')
    assert record.status == SyncRecord.ERROR
    assert record.checkpoint == ''
