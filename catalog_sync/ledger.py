import logging
import re
import time
import uuid
from contextlib import contextmanager
from datetime import timedelta
from threading import Lock
from typing import Optional

from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from . import conf
from .errors import IdentityConflict, SyncInProgress
from .models import SyncRecord
from .platforms import GALLERY_STORE, SHOPIFY, WOOCOMMERCE

logger = logging.getLogger(__name__)

LEASE_POLL_INTERVAL = 0.2

# Shape of the ids each platform hands out. An id that fits another
# platform's shape is never accepted for this one.
EXTERNAL_ID_PATTERNS = {
    SHOPIFY: re.compile(r'^gid://shopify/Product/\d+$'),
    WOOCOMMERCE: re.compile(r'^\d+$'),
    GALLERY_STORE: re.compile(r'^[\w.-]+/[\w.-]+$'),
}


class KeyedLocks:
    """
    One lock per key (thread-safe).

    An entry lives only while some thread holds or waits on its lock, so
    the table does not grow with every product ever synced.
    """

    def __init__(self):
        self._locks = {}
        self._guard = Lock()

    def __len__(self):
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key, timeout: Optional[float] = None):
        """
        Acquire the lock for `key` and yield whether it was obtained.

        None waits forever, zero or less does not wait at all.
        """
        with self._guard:
            entry = self._locks.setdefault(key, [Lock(), 0])
            entry[1] += 1
        lock = entry[0]
        if timeout is None:
            acquired = lock.acquire()
        elif timeout <= 0:
            acquired = lock.acquire(blocking=False)
        else:
            acquired = lock.acquire(timeout=timeout)
        try:
            yield acquired
        finally:
            if acquired:
                lock.release()
            with self._guard:
                entry[1] -= 1
                if not entry[1]:
                    del self._locks[key]


_commit_locks = KeyedLocks()
_lease_locks = KeyedLocks()


class IdentityLedger:
    """
    Sole writer of SyncRecords.

    Commits for the same (product, platform) pair are serialised by a
    per-key lock in this process and a row lock in the database; commits
    for different pairs proceed independently.
    """

    def resolve(self, product_id: str, platform: str) -> SyncRecord:
        """Return the stored record, or an unsaved never-synced one."""
        record = SyncRecord.objects.filter(product_id=product_id, platform=platform).first()
        if record is None:
            record = SyncRecord(product_id=product_id, platform=platform, status=SyncRecord.NEVER_SYNCED)
        return record

    @staticmethod
    def is_update(record: SyncRecord, platform: str) -> bool:
        """UPDATE only when the record holds an id issued by this same platform."""
        return bool(record.external_id) and record.platform == platform and record.assigned_by == platform

    def commit(
        self,
        product_id: str,
        platform: str,
        external_id: Optional[str] = None,
        status: str = SyncRecord.SYNCED,
        checkpoint: Optional[str] = None,
        step_state: Optional[dict] = None,
        error: str = '',
        content_hash: Optional[str] = None,
    ) -> SyncRecord:
        """
        Atomically upsert the record for (product_id, platform).

        `step_state` is merged into the stored identifiers. Passing an
        external id that differs from the stored one raises IdentityConflict
        and leaves the record untouched.
        """
        if external_id is not None:
            self._check_id_shape(product_id, platform, external_id)

        with _commit_locks.hold((product_id, platform)), transaction.atomic():
            record = self._locked_record(product_id, platform)

            if external_id is not None:
                if record.external_id and record.external_id != external_id:
                    raise IdentityConflict(
                        f"Product {product_id} already has {platform} id {record.external_id}; "
                        f"refusing to replace it with {external_id}."
                    )
                if not record.external_id:
                    logger.info("Product %s assigned %s id %s.", product_id, platform, external_id)
                record.external_id = external_id
                record.assigned_by = platform

            record.status = status
            if status == SyncRecord.SYNCED:
                record.last_synced_at = timezone.now()
                record.last_error = ''
            elif status == SyncRecord.ERROR:
                record.last_error = error
            if checkpoint is not None:
                record.checkpoint = checkpoint
            if step_state:
                record.step_state = {**(record.step_state or {}), **step_state}
            if content_hash is not None:
                record.content_hash = content_hash
            record.save()
            return record

    def forget(self, product_id: str, platform: Optional[str] = None) -> int:
        """Delete records when a product or a platform connection is removed."""
        records = SyncRecord.objects.filter(product_id=product_id)
        if platform is not None:
            records = records.filter(platform=platform)
        deleted, _ = records.delete()
        return deleted

    @contextmanager
    def lease(self, product_id: str, platform: str, owner: Optional[str] = None,
              wait: float = 0.0, duration: Optional[int] = None):
        """
        Hold exclusive sync rights for (product_id, platform).

        Takes an in-process lock and a time-bounded lease on the database
        row so concurrent workers in other processes are excluded too.
        Raises SyncInProgress when either cannot be obtained within `wait`.
        """
        owner = owner or uuid.uuid4().hex
        duration = conf.lease_seconds() if duration is None else duration
        with _lease_locks.hold((product_id, platform), timeout=wait) as acquired:
            if not acquired:
                raise SyncInProgress(f"Product {product_id} is already syncing to {platform} in this process.")

            self._claim_lease(product_id, platform, owner, wait, duration)
            try:
                yield owner
            finally:
                SyncRecord.objects.filter(
                    product_id=product_id, platform=platform, lease_owner=owner,
                ).update(lease_owner='', leased_until=None)

    def _claim_lease(self, product_id, platform, owner, wait, duration):
        deadline = time.monotonic() + wait
        self._ensure_row(product_id, platform)
        while True:
            now = timezone.now()
            claimed = SyncRecord.objects.filter(product_id=product_id, platform=platform).filter(
                Q(lease_owner='') | Q(leased_until__isnull=True) | Q(leased_until__lt=now) | Q(lease_owner=owner)
            ).update(lease_owner=owner, leased_until=now + timedelta(seconds=duration))
            if claimed:
                return
            if time.monotonic() >= deadline:
                raise SyncInProgress(f"Product {product_id} is leased by another worker for {platform}.")
            time.sleep(LEASE_POLL_INTERVAL)

    @staticmethod
    def _ensure_row(product_id, platform):
        if SyncRecord.objects.filter(product_id=product_id, platform=platform).exists():
            return
        try:
            with transaction.atomic():
                SyncRecord.objects.create(product_id=product_id, platform=platform)
        except IntegrityError:
            # Another worker created it first.
            pass

    @staticmethod
    def _locked_record(product_id, platform) -> SyncRecord:
        record = SyncRecord.objects.select_for_update().filter(product_id=product_id, platform=platform).first()
        if record is not None:
            return record
        try:
            with transaction.atomic():
                return SyncRecord.objects.create(product_id=product_id, platform=platform)
        except IntegrityError:
            return SyncRecord.objects.select_for_update().get(product_id=product_id, platform=platform)

    @staticmethod
    def _check_id_shape(product_id, platform, external_id):
        pattern = EXTERNAL_ID_PATTERNS.get(platform)
        if pattern is not None and not pattern.match(str(external_id)):
            raise IdentityConflict(
                f"External id {external_id!r} for product {product_id} is not a {platform} id."
            )
