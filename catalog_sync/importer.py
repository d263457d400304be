import logging
from dataclasses import dataclass, field, replace
from typing import Optional

from django.utils.text import slugify

from .bulk import failure_entry
from .canonical import CanonicalProduct, compute_hash
from .errors import SyncError
from .models import SyncRecord
from .orchestrator import PushOrchestrator, build_orchestrator

logger = logging.getLogger(__name__)

SHOPIFY_PRODUCT_PREFIX = 'gid://shopify/Product/'


@dataclass
class ImportResult:
    products: list = field(default_factory=list)
    linked: list = field(default_factory=list)
    failed: dict = field(default_factory=dict)

    def summary(self) -> dict:
        return {
            'imported': len(self.products),
            'linked': len(self.linked),
            'failed': [failure_entry(external_id, exc) for external_id, exc in self.failed.items()],
        }


def imported_id(platform: str, external_id: str) -> str:
    """Canonical id for a platform product that never came from the catalog."""
    local = str(external_id).replace(SHOPIFY_PRODUCT_PREFIX, '').replace('/', '-')
    return f"{platform}-{slugify(local)}"


def import_catalog(store_id: Optional[str] = None, orchestrator: Optional[PushOrchestrator] = None,
                   link: bool = True, credential_store=None) -> ImportResult:
    """
    Read every product of one store back into canonical form.

    Products pushed by this engine keep the id stored in their side channel;
    others get an id derived from their platform id. With `link` each one is
    recorded in the ledger against its platform id, so pushing the imported
    catalog back updates those products instead of creating copies. A
    record that cannot be read or linked is reported and the rest carry on.
    """
    if orchestrator is None:
        orchestrator = build_orchestrator(store_id, credential_store=credential_store)
    platform = orchestrator.platform
    result = ImportResult()
    logger.info("Importing catalog from %s store %s.", platform, store_id or '<given>')

    for external_id, record in orchestrator.strategy.iter_records():
        try:
            product = orchestrator.transformer.from_platform(record)
            if not product.id:
                product = replace(product, id=imported_id(platform, external_id))
            if link and _link(orchestrator, product, external_id, record):
                result.linked.append(product.id)
        except SyncError as exc:
            logger.warning("Skipping %s product %s: [%s] %s", platform, external_id, exc.kind, exc)
            result.failed[external_id] = exc
            continue
        result.products.append(product)

    logger.info("Import from %s complete. imported=%d, linked=%d, failed=%d.",
                platform, len(result.products), len(result.linked), len(result.failed))
    return result


def _link(orchestrator: PushOrchestrator, product: CanonicalProduct, external_id: str, record) -> bool:
    ledger, platform = orchestrator.ledger, orchestrator.platform
    with ledger.lease(product.id, platform):
        existing = ledger.resolve(product.id, platform)
        if ledger.is_update(existing, platform) and existing.external_id == str(external_id):
            return False
        checkpoint, step_state = orchestrator.strategy.linked_state(product, record)
        ledger.commit(
            product.id, platform,
            external_id=str(external_id),
            status=SyncRecord.SYNCED,
            checkpoint=checkpoint,
            step_state=step_state,
            content_hash=compute_hash(product),
        )
    return True
