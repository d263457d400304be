from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class PushState(str, Enum):
    NEW = 'new'
    CREATED = 'created'
    MEDIA_UPLOADED = 'media_uploaded'
    VARIANTS_CREATED = 'variants_created'
    VARIANTS_UPDATED = 'variants_updated'
    INVENTORY_SET = 'inventory_set'
    METADATA_SET = 'metadata_set'
    ACTIVATED = 'activated'
    FAILED = 'failed'

    @classmethod
    def from_checkpoint(cls, checkpoint: str) -> 'PushState':
        return cls(checkpoint) if checkpoint else cls.NEW


# Forward order of the multi-step pipeline; FAILED sits outside it.
PIPELINE_ORDER = (
    PushState.NEW,
    PushState.CREATED,
    PushState.MEDIA_UPLOADED,
    PushState.VARIANTS_CREATED,
    PushState.VARIANTS_UPDATED,
    PushState.INVENTORY_SET,
    PushState.METADATA_SET,
    PushState.ACTIVATED,
)


@dataclass(frozen=True)
class StepResult:
    ok: bool
    state_updates: dict = field(default_factory=dict)
    external_id: Optional[str] = None
    partial: bool = False
    error: Optional[Exception] = None


def next_state(state: PushState, result: StepResult) -> PushState:
    """Advance one step on success, drop to FAILED otherwise. Never moves backwards."""
    if state in (PushState.ACTIVATED, PushState.FAILED):
        raise ValueError(f"{state.value} is terminal; no step runs from it.")
    if not result.ok:
        return PushState.FAILED
    return PIPELINE_ORDER[PIPELINE_ORDER.index(state) + 1]
