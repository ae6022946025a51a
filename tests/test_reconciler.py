from threading import Event

import pytest

from fro.apply import Outcome
from fro.db import Conflict, NotFound
from fro.reconciler import Controller, FreshRSSReconciler, ReconcileState, owner_key

KINDS = ("Deployment", "Service", "Route")


def _converge(reconciler, namespace="default", name="reader", max_passes=10):
    """Re-run passes until one ends with no change, as watch events would."""
    results = []
    for _ in range(max_passes):
        result = reconciler.reconcile(namespace, name)
        results.append(result)
        if result.changed is None:
            return results
    raise AssertionError("did not converge")


def _admit(store, *hosts, name="reader"):
    route = store.get("Route", "default", name)
    route["status"] = {"ingress": [{"host": h} for h in hosts]}
    store.update_status(route)


def test_missing_resource_is_a_no_op(store, writes):
    result = FreshRSSReconciler(store).reconcile("default", "ghost")
    assert result.found is False
    assert result.states == [ReconcileState.START, ReconcileState.DONE]
    assert writes == []


def test_one_change_per_pass_in_fixed_order(store, make_freshrss, writes):
    make_freshrss()
    reconciler = FreshRSSReconciler(store)

    first = reconciler.reconcile("default", "reader")
    assert first.changed == "Deployment"
    assert first.outcomes == {"Deployment": Outcome.CREATED}
    assert first.states == [ReconcileState.START, ReconcileState.APPLY_DEPLOYMENT, ReconcileState.DONE]
    assert writes[1:] == [("ADDED", "Deployment")]
    with pytest.raises(NotFound):
        store.get("Service", "default", "reader")

    second = reconciler.reconcile("default", "reader")
    assert second.changed == "Service"
    assert second.outcomes == {"Deployment": Outcome.UNCHANGED, "Service": Outcome.CREATED}

    third = reconciler.reconcile("default", "reader")
    assert third.changed == "Route"
    assert third.url is None


def test_quiescent_pass_writes_nothing(store, make_freshrss, writes):
    make_freshrss()
    reconciler = FreshRSSReconciler(store)
    _converge(reconciler)
    before = list(writes)

    result = reconciler.reconcile("default", "reader")
    assert result.outcomes == {k: Outcome.UNCHANGED for k in KINDS}
    assert result.states[-2:] == [ReconcileState.PROJECT_STATUS, ReconcileState.DONE]
    assert writes == before


def test_status_url_follows_route_admission(store, make_freshrss):
    make_freshrss()
    reconciler = FreshRSSReconciler(store)
    results = _converge(reconciler)
    assert results[-1].url == ""
    assert store.get("FreshRSS", "default", "reader")["status"]["url"] == ""

    _admit(store, "example.com")
    assert reconciler.reconcile("default", "reader").url == "http://example.com"
    assert store.get("FreshRSS", "default", "reader")["status"]["url"] == "http://example.com"

    _admit(store, "a.example.com", "b.example.com")
    reconciler.reconcile("default", "reader")
    assert store.get("FreshRSS", "default", "reader")["status"]["url"] == ""


def test_status_tolerates_missing_route(store, make_freshrss, monkeypatch):
    make_freshrss()
    reconciler = FreshRSSReconciler(store)
    _converge(reconciler)
    _admit(store, "example.com")
    reconciler.reconcile("default", "reader")

    real_get = store.get

    def get_without_route(kind, namespace, name):
        if kind == "Route":
            raise NotFound("route gone")
        return real_get(kind, namespace, name)

    monkeypatch.setattr(store, "get", get_without_route)
    monkeypatch.setattr("fro.reconciler.apply", lambda store, synthesis: Outcome.UNCHANGED)
    result = reconciler.reconcile("default", "reader")
    assert result.url == ""
    assert real_get("FreshRSS", "default", "reader")["status"]["url"] == ""


def test_title_change_updates_only_the_env_entry(store, make_freshrss):
    make_freshrss(title="A")
    reconciler = FreshRSSReconciler(store)
    _converge(reconciler)
    before = store.get("Deployment", "default", "reader")

    fr = store.get("FreshRSS", "default", "reader")
    fr["spec"]["title"] = "B"
    store.update(fr)

    result = reconciler.reconcile("default", "reader")
    assert result.changed == "Deployment"
    assert result.outcomes == {"Deployment": Outcome.UPDATED}

    after = store.get("Deployment", "default", "reader")
    (old_c,) = before["spec"]["template"]["spec"]["containers"]
    (new_c,) = after["spec"]["template"]["spec"]["containers"]
    assert new_c["env"] == [{"name": "TITLE", "value": "B"}, {"name": "DEFAULTUSER", "value": "admin"}]
    assert after["spec"]["replicas"] == before["spec"]["replicas"] == 1
    assert new_c["image"] == old_c["image"]
    assert new_c["ports"] == old_c["ports"]


def test_externally_added_container_field_survives(store, make_freshrss):
    make_freshrss()
    reconciler = FreshRSSReconciler(store)
    _converge(reconciler)

    dep = store.get("Deployment", "default", "reader")
    dep["spec"]["template"]["spec"]["containers"][0]["resources"] = {"limits": {"cpu": "500m"}}
    store.update(dep)

    result = reconciler.reconcile("default", "reader")
    assert result.outcomes["Deployment"] is Outcome.UNCHANGED
    container = store.get("Deployment", "default", "reader")["spec"]["template"]["spec"]["containers"][0]
    assert container["resources"] == {"limits": {"cpu": "500m"}}


def test_managed_objects_are_owned_and_collected(store, make_freshrss):
    fr = make_freshrss()
    _converge(FreshRSSReconciler(store))

    for kind in KINDS:
        (ref,) = store.get(kind, "default", "reader")["metadata"]["ownerReferences"]
        assert ref["uid"] == fr["metadata"]["uid"]
        assert ref["controller"] is True

    store.delete("FreshRSS", "default", "reader")
    for kind in KINDS:
        with pytest.raises(NotFound):
            store.get(kind, "default", "reader")
    assert FreshRSSReconciler(store).reconcile("default", "reader").found is False


def test_apply_failure_is_logged_and_raised(store, make_freshrss, monkeypatch):
    make_freshrss()

    def conflict(obj):
        raise Conflict("modified concurrently")

    monkeypatch.setattr(store, "create", conflict)
    with pytest.raises(Conflict):
        FreshRSSReconciler(store).reconcile("default", "reader")

    latest = store.latest_events(1)[0]
    assert latest["level"] == "ERROR"
    assert latest["message"].startswith("Failed to create or update Deployment: Conflict")


def test_changes_are_logged(store, make_freshrss):
    make_freshrss()
    _converge(FreshRSSReconciler(store))
    messages = [e["message"] for e in reversed(store.latest_events(10))]
    assert messages == ["Created Deployment", "Created Service", "Created Route"]


def test_cancelled_pass_stops_before_next_state(store, make_freshrss, writes):
    make_freshrss()
    cancel = Event()
    cancel.set()
    result = FreshRSSReconciler(store).reconcile("default", "reader", cancel=cancel)
    assert result.cancelled is True
    assert result.states == [ReconcileState.DONE]
    assert writes == [("ADDED", "FreshRSS")]


def test_owner_key_maps_objects_to_freshrss(store, make_freshrss):
    fr = make_freshrss()
    assert owner_key(fr) == ("default", "reader")
    FreshRSSReconciler(store).reconcile("default", "reader")
    assert owner_key(store.get("Deployment", "default", "reader")) == ("default", "reader")
    assert owner_key({"kind": "Service", "metadata": {"namespace": "default", "name": "x"}}) is None


def test_controller_drains_queue_to_convergence(store, make_freshrss):
    controller = Controller(store, workers=1, retry_delay_s=0)
    make_freshrss()
    _admit_after_route = []

    passes = 0
    while len(controller.queue):
        key = controller.queue.get(timeout=1)
        try:
            result = controller.process(key)
            if result is not None and result.changed == "Route":
                _admit_after_route.append(True)
                _admit(store, "rss.example.com")
        finally:
            controller.queue.done(key)
        passes += 1
        assert passes < 20

    assert _admit_after_route == [True]
    assert store.get("FreshRSS", "default", "reader")["status"]["url"] == "http://rss.example.com"


def test_controller_requeues_failed_pass(store, make_freshrss, monkeypatch):
    controller = Controller(store, workers=1, retry_delay_s=0)
    make_freshrss()
    key = controller.queue.get(timeout=1)

    def boom(*args, **kwargs):
        raise Conflict("try again")

    monkeypatch.setattr(controller.reconciler, "reconcile", boom)
    assert controller.process(key) is None
    controller.queue.done(key)

    assert controller.queue.get(timeout=1) == key
    assert store.latest_events(1)[0]["message"] == "Reconcile failed: Conflict: try again"
