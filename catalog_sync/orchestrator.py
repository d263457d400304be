import logging
from dataclasses import dataclass
from typing import Optional

from . import conf
from .canonical import CanonicalProduct, compute_hash
from .clients import client_for
from .credentials import SettingsCredentialStore
from .errors import PartialStepFailure, PlatformUserError, SyncError, ValidationError
from .ledger import IdentityLedger
from .models import SyncRecord
from .pipeline import PushContext, ShopifyPipeline
from .platforms import GALLERY_STORE, SHOPIFY, WOOCOMMERCE
from .pushers import GalleryStorePusher, WooCommercePusher
from .state import PIPELINE_ORDER, PushState, StepResult, next_state
from .transformers import SyncContext, get_transformer

logger = logging.getLogger(__name__)

CREATE = 'create'
UPDATE = 'update'
RESUME = 'resume'
SKIPPED = 'skipped'


@dataclass(frozen=True)
class PushOutcome:
    product_id: str
    platform: str
    external_id: Optional[str]
    action: str
    partial: bool = False
    failed_media: tuple = ()
    steps: tuple = ()


class PushOrchestrator:
    """
    Pushes one canonical product to one platform.

    The strategy is either a single-call pusher (WooCommerce, gallery store)
    or a multi-step pipeline (Shopify). For pipelines every completed step
    is committed to the ledger as the record's checkpoint before the next
    one starts, so a later push resumes at the first incomplete step.
    """

    def __init__(self, platform: str, strategy, ledger: Optional[IdentityLedger] = None, transformer=None):
        self.platform = platform
        self.strategy = strategy
        self.ledger = ledger or IdentityLedger()
        self.transformer = transformer or get_transformer(platform)

    def push(self, product: CanonicalProduct, skip_unchanged: bool = False) -> PushOutcome:
        with self.ledger.lease(product.id, self.platform):
            record = self.ledger.resolve(product.id, self.platform)
            content_hash = compute_hash(product)
            unchanged = record.status == SyncRecord.SYNCED and record.content_hash == content_hash
            # Media that failed last time is retried even when the product itself is unchanged.
            if skip_unchanged and unchanged and not (record.step_state or {}).get('failed_media'):
                logger.debug("Product %s unchanged on %s, skipping.", product.id, self.platform)
                return PushOutcome(product.id, self.platform, record.external_id, SKIPPED)

            external_id = record.external_id if self.ledger.is_update(record, self.platform) else None
            payload = self._build_payload(product, external_id)

            if self.strategy.multi_step:
                outcome = self._run_pipeline(product, payload, record, external_id)
            else:
                outcome = self._push_once(product, payload, external_id)

            self.ledger.commit(product.id, self.platform, external_id=outcome.external_id,
                               status=SyncRecord.SYNCED, content_hash=content_hash)
            logger.info("Product %s %s on %s as %s%s.", product.id, outcome.action, self.platform,
                        outcome.external_id, ' (partial)' if outcome.partial else '')
            return outcome

    def pull(self, product_id: str) -> CanonicalProduct:
        """Read the platform's current copy of a synced product back into canonical form."""
        record = self.ledger.resolve(product_id, self.platform)
        if not self.ledger.is_update(record, self.platform):
            raise ValidationError(f"Product {product_id} has never been pushed to {self.platform}.")
        platform_record = self.strategy.fetch_record(record.external_id)
        if platform_record is None:
            raise PlatformUserError(self.platform, [f"{record.external_id} not found"], status_code=404)
        return self.transformer.from_platform(platform_record)

    def _build_payload(self, product: CanonicalProduct, external_id: Optional[str]):
        context = SyncContext(
            external_id=external_id,
            weight_precision=conf.weight_precision(),
            default_category=conf.default_category(),
        )
        try:
            self.strategy.prepare_context(product, context)
            return self.transformer.to_platform(product, context)
        except Exception as exc:
            self._record_error(product.id, exc)
            raise

    def _record_error(self, product_id: str, exc: Exception):
        self.ledger.commit(product_id, self.platform, status=SyncRecord.ERROR, error=f"{exc}")

    # Single-call platforms

    def _push_once(self, product: CanonicalProduct, payload, external_id: Optional[str]) -> PushOutcome:
        def on_created(new_id):
            self.ledger.commit(product.id, self.platform, external_id=new_id, status=SyncRecord.PENDING)

        try:
            pushed_id = self.strategy.push(payload, external_id, on_created=on_created)
        except Exception as exc:
            logger.error("Push of %s to %s failed: %s", product.id, self.platform, exc)
            self._record_error(product.id, exc)
            raise
        return PushOutcome(product.id, self.platform, pushed_id, UPDATE if external_id else CREATE)

    # Multi-step platforms

    def _run_pipeline(self, product: CanonicalProduct, payload, record: SyncRecord,
                      external_id: Optional[str]) -> PushOutcome:
        def persist(updates):
            self.ledger.commit(product.id, self.platform, status=SyncRecord.PENDING, step_state=updates)

        ctx = PushContext(product=product, payload=payload, external_id=external_id,
                          step_state=dict(record.step_state or {}), persist=persist)
        state = PushState.from_checkpoint(record.checkpoint)

        if external_id and state is PushState.ACTIVATED:
            return self._run_update(ctx)

        if external_id and state is PushState.NEW:
            # The shell exists; creating it again would duplicate the product.
            state = PushState.CREATED
        elif not external_id and state is not PushState.NEW:
            logger.warning("Product %s has checkpoint %s but no %s id; starting over.",
                           product.id, state.value, self.platform)
            state = PushState.NEW
            ctx.step_state = {}
        action = RESUME if external_id else CREATE

        steps, partial = [], False
        while state is not PushState.ACTIVATED:
            target = PIPELINE_ORDER[PIPELINE_ORDER.index(state) + 1]
            try:
                result = self.strategy.step_from(state)(ctx)
            except Exception as exc:
                result = StepResult(ok=False, error=exc)

            reached = next_state(state, result)
            if reached is PushState.FAILED:
                logger.error("Product %s: step %s failed on %s after checkpoint %s: %s",
                             product.id, target.value, self.platform, state.value, result.error)
                self._record_error(product.id, result.error)
                if isinstance(result.error, SyncError) and not result.error.retryable:
                    # The checkpoint stays; only retryable causes are wrapped.
                    raise result.error
                raise PartialStepFailure(target.value, result.error, checkpoint=state.value) from result.error

            if result.external_id:
                ctx.external_id = result.external_id
            self.ledger.commit(
                product.id, self.platform,
                external_id=result.external_id,
                status=SyncRecord.PENDING,
                checkpoint=reached.value,
                step_state=ctx.merge(result.state_updates),
            )
            logger.debug("Product %s reached %s on %s.", product.id, reached.value, self.platform)
            partial = partial or result.partial
            steps.append(reached.value)
            state = reached

        return PushOutcome(
            product.id, self.platform, ctx.external_id, action,
            partial=partial,
            failed_media=tuple(ctx.step_state.get('failed_media') or ()),
            steps=tuple(steps),
        )

    def _run_update(self, ctx: PushContext) -> PushOutcome:
        try:
            result = self.strategy.update(ctx)
        except Exception as exc:
            logger.error("Update of %s on %s failed: %s", ctx.product.id, self.platform, exc)
            self._record_error(ctx.product.id, exc)
            raise
        if result.state_updates:
            self.ledger.commit(ctx.product.id, self.platform, status=SyncRecord.PENDING,
                               step_state=ctx.merge(result.state_updates))
        return PushOutcome(ctx.product.id, self.platform, ctx.external_id, UPDATE,
                           partial=result.partial,
                           failed_media=tuple(ctx.step_state.get('failed_media') or ()))


def build_strategy(credentials, client=None):
    client = client or client_for(credentials)
    if credentials.platform == SHOPIFY:
        return ShopifyPipeline(client)
    if credentials.platform == WOOCOMMERCE:
        return WooCommercePusher(client)
    if credentials.platform == GALLERY_STORE:
        return GalleryStorePusher(client, credentials.collection)
    raise ValueError(f"Unknown platform {credentials.platform!r}.")


def build_orchestrator(store_id: str, credential_store=None, ledger: Optional[IdentityLedger] = None) -> PushOrchestrator:
    """Orchestrator for a configured store, wired with its credentials and client."""
    credentials = (credential_store or SettingsCredentialStore()).get_credentials(store_id)
    return PushOrchestrator(credentials.platform, build_strategy(credentials), ledger=ledger)
