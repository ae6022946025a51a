from __future__ import annotations

from enum import Enum

from .components import Synthesis
from .db import NotFound, Store


class Outcome(str, Enum):
    UNCHANGED = "unchanged"
    CREATED = "created"
    UPDATED = "updated"


def apply(store: Store, synthesis: Synthesis) -> Outcome:
    """Get-or-create ``synthesis`` against the store, writing only on change.

    Store errors (unavailable, forbidden, conflict) are raised unmodified;
    nothing here retries.
    """
    try:
        live = store.get(synthesis.kind, synthesis.namespace, synthesis.name)
    except NotFound:
        live = None

    merged = synthesis.merge(synthesis.desired, live if live is not None else synthesis.skeleton)

    if live is None:
        store.create(merged)
        return Outcome.CREATED
    if merged == live:
        return Outcome.UNCHANGED
    store.update(merged)
    return Outcome.UPDATED
