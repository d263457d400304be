import logging
from typing import Optional

from celery import shared_task

from . import conf
from .bulk import run_bulk
from .canonical import JsonCatalog, merge_into_catalog
from .importer import import_catalog
from .orchestrator import build_orchestrator

logger = logging.getLogger(__name__)


@shared_task(bind=True, name='catalog_sync.sync_catalog')
def sync_catalog_task(self, store_id: str, product_ids: Optional[list] = None,
                      concurrency: Optional[int] = None, skip_unchanged: bool = True):
    """
    Push the canonical catalog (or a subset of it) to one configured store.

    Steps:
      1. Load the catalog from CATALOG_DATA_PATH.
      2. Build the orchestrator for `store_id` from its stored credentials.
      3. Run the bulk push; products whose content hash is unchanged since
         their last successful sync are skipped.
      4. Return the summary: counts plus every failure's id and error kind.
    """
    catalog = JsonCatalog(conf.catalog_data_path())
    orchestrator = build_orchestrator(store_id)
    ids = product_ids if product_ids is not None else catalog.ids()
    logger.info("Starting catalog sync of %d product(s) to store %s.", len(ids), store_id)

    result = run_bulk(ids, orchestrator.platform, concurrency, catalog=catalog,
                      orchestrator=orchestrator, skip_unchanged=skip_unchanged)
    return result.summary()


@shared_task(bind=True, name='catalog_sync.push_product')
def push_product_task(self, store_id: str, product_id: str):
    """Push a single product; failures are reported in the summary, not raised."""
    return sync_catalog_task(store_id, product_ids=[product_id], concurrency=1, skip_unchanged=False)


@shared_task(bind=True, name='catalog_sync.import_catalog')
def import_catalog_task(self, store_id: str, overwrite: bool = False):
    """
    Pull every product of one store into the canonical catalog file.

    Imported products are linked in the ledger to their platform ids, and
    products already in the catalog are left alone unless `overwrite` is set.
    """
    result = import_catalog(store_id)
    summary = result.summary()
    summary['written'] = merge_into_catalog(conf.catalog_data_path(), result.products, overwrite=overwrite)
    return summary
