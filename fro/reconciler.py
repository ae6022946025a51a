from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from threading import Event, Thread
from typing import Any, Callable

from .api_models import KIND, FreshRSS
from .apply import Outcome, apply
from .components import ROUTE, SYNTHESIZERS, Synthesizer
from .db import NotFound, Store
from .ownership import controller_of
from .runtime import Key, WorkQueue
from .settings import settings
from .status import project_url


class ReconcileState(str, Enum):
    START = "start"
    APPLY_DEPLOYMENT = "apply_deployment"
    APPLY_SERVICE = "apply_service"
    APPLY_ROUTE = "apply_route"
    PROJECT_STATUS = "project_status"
    DONE = "done"


APPLY_STATES = (ReconcileState.APPLY_DEPLOYMENT, ReconcileState.APPLY_SERVICE, ReconcileState.APPLY_ROUTE)

# Transition taken when a state completes without an early exit.
NEXT_STATE = {
    ReconcileState.START: ReconcileState.APPLY_DEPLOYMENT,
    ReconcileState.APPLY_DEPLOYMENT: ReconcileState.APPLY_SERVICE,
    ReconcileState.APPLY_SERVICE: ReconcileState.APPLY_ROUTE,
    ReconcileState.APPLY_ROUTE: ReconcileState.PROJECT_STATUS,
    ReconcileState.PROJECT_STATUS: ReconcileState.DONE,
}


@dataclass
class ReconcileResult:
    namespace: str
    name: str
    found: bool = True
    cancelled: bool = False
    states: list[ReconcileState] = field(default_factory=list)
    outcomes: dict[str, Outcome] = field(default_factory=dict)
    changed: str | None = None  # kind created/updated in this pass
    url: str | None = None  # set only when status was projected
    instance: FreshRSS | None = field(default=None, repr=False)

    def summary(self) -> dict[str, Any]:
        return {
            "namespace": self.namespace,
            "name": self.name,
            "found": self.found,
            "cancelled": self.cancelled,
            "states": [s.value for s in self.states],
            "outcomes": {k: v.value for k, v in self.outcomes.items()},
            "changed": self.changed,
            "url": self.url,
        }


class FreshRSSReconciler:
    """Runs one convergence pass for a FreshRSS identity.

    Kinds are applied in a fixed order and the pass ends as soon as one of
    them is created or updated; the watch event caused by that write
    triggers the next pass. Status is projected only from a pass in which
    every kind was unchanged.
    """

    def __init__(self, store: Store, synthesizers: tuple[Synthesizer, ...] = SYNTHESIZERS):
        if len(synthesizers) != len(APPLY_STATES):
            raise ValueError(f"Expected {len(APPLY_STATES)} synthesizers, got {len(synthesizers)}")
        self.store = store
        self._synthesizer_for: dict[ReconcileState, Synthesizer] = dict(zip(APPLY_STATES, synthesizers))
        self._handlers: dict[ReconcileState, Callable[[ReconcileResult], ReconcileState]] = {
            ReconcileState.START: self._start,
            ReconcileState.PROJECT_STATUS: self._project_status,
        }
        for state in APPLY_STATES:
            self._handlers[state] = self._apply_kind

    def reconcile(self, namespace: str, name: str, cancel: Event | None = None) -> ReconcileResult:
        result = ReconcileResult(namespace=namespace, name=name)
        state = ReconcileState.START
        while state is not ReconcileState.DONE:
            if cancel is not None and cancel.is_set():
                result.cancelled = True
                break
            result.states.append(state)
            state = self._handlers[state](result)
        result.states.append(ReconcileState.DONE)
        return result

    def _start(self, result: ReconcileResult) -> ReconcileState:
        try:
            obj = self.store.get(KIND, result.namespace, result.name)
        except NotFound:
            # deleted; owned objects are garbage collected by the store
            result.found = False
            return ReconcileState.DONE
        result.instance = FreshRSS.model_validate(obj)
        return NEXT_STATE[ReconcileState.START]

    def _apply_kind(self, result: ReconcileResult) -> ReconcileState:
        state = result.states[-1]
        synthesizer = self._synthesizer_for[state]
        assert result.instance is not None
        try:
            outcome = apply(self.store, synthesizer.synthesize(result.instance))
        except Exception as e:
            self.store.log_event(
                "ERROR",
                f"Failed to create or update {synthesizer.kind}: {type(e).__name__}: {e}",
                namespace=result.namespace,
                name=result.name,
            )
            raise

        result.outcomes[synthesizer.kind] = outcome
        if outcome is Outcome.UNCHANGED:
            return NEXT_STATE[state]

        result.changed = synthesizer.kind
        self.store.log_event(
            "INFO",
            f"{outcome.value.capitalize()} {synthesizer.kind}",
            namespace=result.namespace,
            name=result.name,
        )
        return ReconcileState.DONE

    def _project_status(self, result: ReconcileResult) -> ReconcileState:
        instance = result.instance
        assert instance is not None
        try:
            route = self.store.get(ROUTE, result.namespace, result.name)
        except NotFound:
            route = None

        url = project_url(route)
        result.url = url
        if url != instance.status.url:
            manifest = instance.manifest()
            manifest["status"]["url"] = url
            self.store.update_status(manifest)
            self.store.log_event(
                "INFO",
                f"Updated status url to '{url}'",
                namespace=result.namespace,
                name=result.name,
            )
        return NEXT_STATE[ReconcileState.PROJECT_STATUS]


def owner_key(obj: dict[str, Any]) -> Key | None:
    """Map a watched object to the FreshRSS identity it belongs to."""
    meta = obj.get("metadata") or {}
    namespace = meta.get("namespace") or ""
    if obj.get("kind") == KIND:
        return namespace, meta.get("name") or ""
    owner = controller_of(obj)
    if owner is not None and owner.get("kind") == KIND:
        return namespace, owner.get("name") or ""
    return None


class Controller:
    """Feeds store watch events through a work queue into the reconciler."""

    def __init__(self, store: Store, workers: int | None = None, retry_delay_s: float | None = None):
        self.store = store
        self.reconciler = FreshRSSReconciler(store)
        self.queue = WorkQueue()
        self.workers = max(1, int(settings.workers if workers is None else workers))
        self.retry_delay_s = settings.retry_delay_s if retry_delay_s is None else retry_delay_s
        self._stop = Event()
        self._threads: list[Thread] = []
        store.watch(self.on_event)

    def on_event(self, event_type: str, obj: dict[str, Any]) -> None:
        key = owner_key(obj)
        if key is not None:
            self.queue.add(key)

    def start(self) -> None:
        if any(t.is_alive() for t in self._threads):
            return
        self._threads = [Thread(target=self._worker, daemon=True) for _ in range(self.workers)]
        for t in self._threads:
            t.start()
        self.store.log_event("INFO", f"Controller started with {self.workers} worker(s)")
        # initial resync: every existing FreshRSS gets one pass
        for obj in self.store.list(KIND):
            self.on_event("SYNC", obj)

    def stop(self, timeout_s: float = 5.0) -> None:
        self._stop.set()
        self.queue.shutdown()
        for t in self._threads:
            t.join(timeout_s)

    def _worker(self) -> None:
        while True:
            key = self.queue.get()
            if key is None:
                return
            try:
                self.process(key)
            finally:
                self.queue.done(key)

    def process(self, key: Key) -> ReconcileResult | None:
        namespace, name = key
        try:
            return self.reconciler.reconcile(namespace, name, cancel=self._stop)
        except Exception as e:
            self.store.log_event(
                "ERROR",
                f"Reconcile failed: {type(e).__name__}: {e}",
                namespace=namespace,
                name=name,
            )
            if not self._stop.is_set():
                self.queue.add_after(key, self.retry_delay_s)
            return None
