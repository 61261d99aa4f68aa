"""
Tests for the Controller - watches, workers and resync wired together.
"""

import time
from unittest.mock import Mock

import pytest

from k8s_duplicator.engine.reconcile import Reconciler
from k8s_duplicator.engine.triggers import FULL_RESYNC, ReconcileRequest, route
from k8s_duplicator.errors import ReconcileCancelled, StoreError
from k8s_duplicator.models.objects import NamespaceSnapshot, ResourceKind
from k8s_duplicator.scheduling.controller import Controller
from k8s_duplicator.scheduling.workqueue import WorkQueue
from k8s_duplicator.store.base import ADDED, DELETED, RESYNC, WatchEvent

from .conftest import make_secret, make_source


def wait_for(predicate, timeout=5.0, interval=0.02):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def controller(store, registry):
    queue = WorkQueue(base_delay=0.001, max_delay=0.01, registry=registry)
    controller = Controller(
        store, workers=2, resync_period=0, queue=queue, registry=registry
    )
    yield controller
    controller.stop(timeout=2)


class TestRouting:
    """Tests for mapping watch events to requests."""

    def test_secret_event_maps_to_its_key(self):
        event = WatchEvent(ADDED, ResourceKind.SECRET, make_secret("a", "s"))

        assert route(event) == ReconcileRequest(namespace="a", name="s")

    def test_namespace_event_maps_to_full_resync(self):
        event = WatchEvent(DELETED, ResourceKind.NAMESPACE, NamespaceSnapshot(name="a"))

        assert route(event) is FULL_RESYNC
        assert route(event).is_full_resync

    def test_resync_event_maps_to_full_resync(self):
        assert route(WatchEvent(RESYNC, ResourceKind.SECRET)) == FULL_RESYNC

    def test_request_string_forms(self):
        assert str(FULL_RESYNC) == "<full-resync>"
        assert str(ReconcileRequest("a", "s")) == "a/s"


class TestControllerLoop:
    """Tests for the running controller against an in-memory cluster."""

    def test_initial_resync_converges_existing_sources(self, store, controller):
        store.put_secret(make_source())

        controller.start()

        assert wait_for(lambda: all(
            store.peek(ns, "secretA") is not None for ns in ("a", "b", "c")
        ))

    def test_new_source_picked_up_from_events(self, store, controller):
        controller.start()
        assert wait_for(lambda: controller.reconciler.last_success is not None)

        store.put_secret(make_source("b", "fresh"))

        assert wait_for(lambda: store.peek("default", "fresh") is not None)

    def test_new_namespace_receives_copies(self, store, controller):
        store.put_secret(make_source())
        controller.start()
        assert wait_for(lambda: store.peek("c", "secretA") is not None)

        store.add_namespace("late")

        assert wait_for(lambda: store.peek("late", "secretA") is not None)

    def test_deleted_source_cleans_up(self, store, controller):
        store.put_secret(make_source())
        controller.start()
        assert wait_for(lambda: store.peek("c", "secretA") is not None)

        store.remove_secret("default", "secretA")

        assert wait_for(lambda: all(
            store.peek(ns, "secretA") is None for ns in ("a", "b", "c")
        ))

    def test_failed_cycle_is_retried(self, store, controller):
        store.put_secret(make_source())
        store.fail_next("list_secrets", StoreError("apiserver unavailable", status=503))

        controller.start()

        assert wait_for(lambda: store.peek("a", "secretA") is not None)

    def test_periodic_resync(self, store, registry):
        controller = Controller(store, resync_period=0.05, registry=registry)
        controller.start()
        try:
            assert wait_for(lambda: registry.counter("reconcile_total").get() >= 5)
        finally:
            controller.stop(timeout=2)

    def test_stop_is_clean_and_idempotent(self, store, controller):
        controller.start()
        assert controller.running

        controller.stop(timeout=2)
        controller.stop(timeout=2)

        assert not controller.running
        assert controller.wait(timeout=0)
        assert controller.queue.shutting_down

    def test_cannot_start_twice(self, controller):
        controller.start()

        with pytest.raises(RuntimeError):
            controller.start()

    def test_workers_must_be_positive(self, store):
        with pytest.raises(ValueError):
            Controller(store, workers=0)


class TestProcessNext:
    """Tests for a single worker step, without threads."""

    def test_success_forgets_request(self, store, registry):
        controller = Controller(store, registry=registry)
        store.put_secret(make_source())
        controller.queue.add(FULL_RESYNC)

        assert controller.process_next() is True

        assert store.peek("a", "secretA") is not None
        assert controller.queue.num_requeues(FULL_RESYNC) == 0
        assert not controller.queue.is_processing(FULL_RESYNC)

    def test_failure_requeues_with_backoff(self, store, registry):
        controller = Controller(store, registry=registry)
        store.fail_next("list_secrets", StoreError("down"))
        controller.queue.add(FULL_RESYNC)

        controller.process_next()

        assert controller.queue.num_requeues(FULL_RESYNC) == 1
        assert controller.queue.pending_delayed() == 1

    def test_unexpected_error_requeues(self, store, registry):
        reconciler = Mock(spec=Reconciler)
        reconciler.reconcile.side_effect = RuntimeError("bug")
        controller = Controller(store, reconciler=reconciler, registry=registry)
        controller.queue.add(FULL_RESYNC)

        assert controller.process_next() is True

        assert controller.queue.num_requeues(FULL_RESYNC) == 1

    def test_cancelled_cycle_not_requeued(self, store, registry):
        reconciler = Mock(spec=Reconciler)
        reconciler.reconcile.side_effect = ReconcileCancelled("stopping")
        controller = Controller(store, reconciler=reconciler, registry=registry)
        controller.queue.add(FULL_RESYNC)

        controller.process_next()

        assert controller.queue.num_requeues(FULL_RESYNC) == 0

    def test_returns_false_after_shutdown(self, store, registry):
        controller = Controller(store, registry=registry)
        controller.queue.shutdown()

        assert controller.process_next() is False
