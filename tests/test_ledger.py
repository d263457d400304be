import threading
from datetime import timedelta

import pytest
from django.utils import timezone

from catalog_sync import ledger as ledger_module
from catalog_sync.errors import IdentityConflict, SyncInProgress
from catalog_sync.ledger import IdentityLedger, KeyedLocks
from catalog_sync.models import SyncRecord

SHOPIFY_ID = 'gid://shopify/Product/1001'


@pytest.fixture()
def ledger():
    return IdentityLedger()


# ---------------------------------------------------------------------------
# Resolve / Commit
# ---------------------------------------------------------------------------

@pytest.mark.django_db
class TestResolveAndCommit:
    def test_resolve_unknown_pair_is_never_synced(self, ledger):
        record = ledger.resolve('art-001', 'shopify')
        assert record.pk is None
        assert record.status == SyncRecord.NEVER_SYNCED
        assert record.external_id is None
        assert not ledger.is_update(record, 'shopify')

    def test_first_commit_creates_record(self, ledger):
        ledger.commit('art-001', 'shopify', external_id=SHOPIFY_ID, status=SyncRecord.SYNCED)
        record = ledger.resolve('art-001', 'shopify')
        assert record.external_id == SHOPIFY_ID
        assert record.assigned_by == 'shopify'
        assert record.last_synced_at is not None
        assert ledger.is_update(record, 'shopify')

    def test_same_id_recommit_is_fine(self, ledger):
        ledger.commit('art-001', 'shopify', external_id=SHOPIFY_ID)
        ledger.commit('art-001', 'shopify', external_id=SHOPIFY_ID, checkpoint='activated')
        assert SyncRecord.objects.get().checkpoint == 'activated'

    def test_different_id_is_conflict_and_keeps_original(self, ledger):
        ledger.commit('art-001', 'shopify', external_id=SHOPIFY_ID)
        with pytest.raises(IdentityConflict):
            ledger.commit('art-001', 'shopify', external_id='gid://shopify/Product/2002')
        assert ledger.resolve('art-001', 'shopify').external_id == SHOPIFY_ID

    def test_id_from_another_platform_rejected(self, ledger):
        with pytest.raises(IdentityConflict, match='not a woocommerce id'):
            ledger.commit('art-001', 'woocommerce', external_id=SHOPIFY_ID)
        assert not SyncRecord.objects.exists()

    def test_ids_are_per_platform(self, ledger):
        ledger.commit('art-001', 'shopify', external_id=SHOPIFY_ID)
        ledger.commit('art-001', 'woocommerce', external_id='55')
        assert ledger.resolve('art-001', 'woocommerce').external_id == '55'
        assert not ledger.is_update(ledger.resolve('art-001', 'gallery_store'), 'gallery_store')

    def test_commit_without_id_keeps_existing(self, ledger):
        ledger.commit('art-001', 'shopify', external_id=SHOPIFY_ID, status=SyncRecord.PENDING)
        ledger.commit('art-001', 'shopify', status=SyncRecord.ERROR, error='boom')
        record = ledger.resolve('art-001', 'shopify')
        assert record.external_id == SHOPIFY_ID
        assert record.status == SyncRecord.ERROR
        assert record.last_error == 'boom'

    def test_synced_clears_last_error(self, ledger):
        ledger.commit('art-001', 'shopify', status=SyncRecord.ERROR, error='boom')
        ledger.commit('art-001', 'shopify', status=SyncRecord.SYNCED)
        assert ledger.resolve('art-001', 'shopify').last_error == ''

    def test_step_state_is_merged(self, ledger):
        ledger.commit('art-001', 'shopify', status=SyncRecord.PENDING, step_state={'media_ids': {'a': 1}})
        ledger.commit('art-001', 'shopify', status=SyncRecord.PENDING, step_state={'location_id': 'L1'})
        assert ledger.resolve('art-001', 'shopify').step_state == {'media_ids': {'a': 1}, 'location_id': 'L1'}

    def test_forget(self, ledger):
        ledger.commit('art-001', 'shopify', external_id=SHOPIFY_ID)
        ledger.commit('art-001', 'woocommerce', external_id='55')
        assert ledger.forget('art-001', 'shopify') == 1
        assert ledger.forget('art-001') == 1
        assert not SyncRecord.objects.exists()


# ---------------------------------------------------------------------------
# Lease
# ---------------------------------------------------------------------------

@pytest.mark.django_db
class TestLease:
    def test_lease_is_recorded_and_released(self, ledger):
        with ledger.lease('art-001', 'shopify', owner='worker-1'):
            assert SyncRecord.objects.get().lease_owner == 'worker-1'
        record = SyncRecord.objects.get()
        assert record.lease_owner == ''
        assert record.leased_until is None

    def test_same_pair_cannot_be_leased_twice(self, ledger):
        with ledger.lease('art-001', 'shopify'):
            with pytest.raises(SyncInProgress):
                with ledger.lease('art-001', 'shopify'):
                    pass

    def test_different_pairs_do_not_block(self, ledger):
        with ledger.lease('art-001', 'shopify'):
            with ledger.lease('art-001', 'woocommerce'):
                with ledger.lease('art-002', 'shopify'):
                    pass

    def test_live_lease_from_another_worker_blocks(self, ledger):
        SyncRecord.objects.create(product_id='art-001', platform='shopify', lease_owner='other',
                                  leased_until=timezone.now() + timedelta(minutes=5))
        with pytest.raises(SyncInProgress, match='leased by another worker'):
            with ledger.lease('art-001', 'shopify'):
                pass

    def test_expired_lease_can_be_taken_over(self, ledger):
        SyncRecord.objects.create(product_id='art-001', platform='shopify', lease_owner='crashed',
                                  leased_until=timezone.now() - timedelta(seconds=1))
        with ledger.lease('art-001', 'shopify', owner='worker-2'):
            assert SyncRecord.objects.get().lease_owner == 'worker-2'

    def test_lease_released_when_body_raises(self, ledger):
        with pytest.raises(RuntimeError):
            with ledger.lease('art-001', 'shopify'):
                raise RuntimeError('boom')
        with ledger.lease('art-001', 'shopify'):
            pass


# ---------------------------------------------------------------------------
# Per-key locks
# ---------------------------------------------------------------------------

class TestKeyedLocks:
    def test_entry_is_dropped_once_released(self):
        locks = KeyedLocks()
        with locks.hold('a') as acquired:
            assert acquired
            assert len(locks) == 1
        assert len(locks) == 0

    def test_held_key_cannot_be_taken_without_waiting(self):
        locks = KeyedLocks()
        with locks.hold('a'):
            with locks.hold('a', timeout=0) as acquired:
                assert not acquired
            with locks.hold('b', timeout=0) as acquired:
                assert acquired
        assert len(locks) == 0

    def test_contended_key_is_dropped_after_last_user(self):
        locks = KeyedLocks()
        holding = threading.Event()
        release = threading.Event()
        results = []

        def first():
            with locks.hold('a'):
                holding.set()
                release.wait(1)

        def second():
            holding.wait(1)
            with locks.hold('a', timeout=2) as acquired:
                results.append(acquired)

        threads = [threading.Thread(target=first), threading.Thread(target=second)]
        for thread in threads:
            thread.start()
        holding.wait(1)
        release.set()
        for thread in threads:
            thread.join()

        assert results == [True]
        assert len(locks) == 0


@pytest.mark.django_db
class TestLockTablesStayBounded:
    def test_commits_and_leases_leave_no_lock_entries(self, ledger):
        for n in range(20):
            product_id = f'art-{n:03d}'
            with ledger.lease(product_id, 'shopify'):
                ledger.commit(product_id, 'shopify', status=SyncRecord.PENDING)

        assert len(ledger_module._commit_locks) == 0
        assert len(ledger_module._lease_locks) == 0
