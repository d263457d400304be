import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from django.db import close_old_connections

from . import conf
from .errors import PartialStepFailure, SyncError
from .orchestrator import SKIPPED

logger = logging.getLogger(__name__)


@dataclass
class BulkResult:
    succeeded: list = field(default_factory=list)
    failed: dict = field(default_factory=dict)
    partial: list = field(default_factory=list)
    skipped: list = field(default_factory=list)

    def summary(self) -> dict:
        return {
            'succeeded': len(self.succeeded),
            'skipped': len(self.skipped),
            'partial': list(self.partial),
            'failed': [failure_entry(product_id, exc) for product_id, exc in self.failed.items()],
        }


def failure_entry(product_id: str, exc: Exception) -> dict:
    entry = {'id': product_id, 'kind': getattr(exc, 'kind', type(exc).__name__), 'error': str(exc)}
    if isinstance(exc, PartialStepFailure):
        entry['step'] = exc.step
        entry['cause'] = getattr(exc.cause, 'kind', type(exc.cause).__name__)
    return entry


def run_bulk(product_ids, platform: str, concurrency_limit=None, *, catalog, orchestrator,
             skip_unchanged: bool = False) -> BulkResult:
    """
    Push every product in `product_ids` and collect a per-item result.

    A failing product never stops the run; its error is recorded under its
    id and the remaining products carry on. At most `concurrency_limit`
    products are in flight at once.
    """
    if orchestrator.platform != platform:
        raise ValueError(f"Orchestrator targets {orchestrator.platform}, not {platform}.")
    limit = max(1, concurrency_limit or conf.concurrency())
    product_ids = list(product_ids)
    logger.info("Bulk push of %d product(s) to %s, concurrency %d.", len(product_ids), platform, limit)

    def push_one(product_id):
        try:
            return product_id, orchestrator.push(catalog.get(product_id), skip_unchanged=skip_unchanged), None
        except SyncError as exc:
            return product_id, None, exc
        except Exception as exc:
            logger.exception("Unexpected error pushing %s to %s.", product_id, platform)
            return product_id, None, exc

    def push_in_thread(product_id):
        try:
            return push_one(product_id)
        finally:
            close_old_connections()

    if limit == 1:
        outcomes = map(push_one, product_ids)
    else:
        with ThreadPoolExecutor(max_workers=limit) as pool:
            outcomes = list(pool.map(push_in_thread, product_ids))

    result = BulkResult()
    for product_id, outcome, exc in outcomes:
        if exc is not None:
            logger.warning("Product %s failed on %s: [%s] %s",
                           product_id, platform, getattr(exc, 'kind', type(exc).__name__), exc)
            result.failed[product_id] = exc
        elif outcome.action == SKIPPED:
            result.skipped.append(product_id)
        else:
            result.succeeded.append(product_id)
            if outcome.partial:
                result.partial.append(product_id)

    logger.info("Bulk push to %s complete. succeeded=%d, skipped=%d, failed=%d.",
                platform, len(result.succeeded), len(result.skipped), len(result.failed))
    return result
