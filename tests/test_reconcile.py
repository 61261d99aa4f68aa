"""
Tests for the Convergence Engine.

Each test seeds an in-memory cluster, runs one or more cycles and checks
both the resulting cluster state and the exact writes that were issued.
"""

import threading

import pytest

from k8s_duplicator.engine.reconcile import Reconciler, generate_reconcile_id
from k8s_duplicator.engine.triggers import FULL_RESYNC, ReconcileRequest
from k8s_duplicator.errors import (
    AlreadyExistsError,
    ConflictError,
    ListingError,
    NotFoundError,
    ReconcileCancelled,
    ReconcileFailed,
    StoreError,
)

from .conftest import make_duplicate, make_secret, make_source


def write_keys(store, operation=None):
    return [
        op.key for op in store.writes()
        if operation is None or op.operation == operation
    ]


class TestPlacement:
    """Tests for creating missing duplicates."""

    def test_source_copied_to_every_other_namespace(self, store, reconciler):
        """Test one source and three active namespaces yield three copies."""
        store.put_secret(make_source("default", "secretA", data={"foo": b"bar"}))

        result = reconciler.reconcile()

        assert result.created == ["a/secretA", "b/secretA", "c/secretA"]
        for namespace in ("a", "b", "c"):
            copy = store.peek(namespace, "secretA")
            assert copy.data == {"foo": b"bar"}
            assert copy.annotations == {"source": "default/secretA"}
        assert write_keys(store) == ["a/secretA", "b/secretA", "c/secretA"]

    def test_second_cycle_writes_nothing(self, store, reconciler):
        store.put_secret(make_source())
        reconciler.reconcile()
        store.reset_operations()

        result = reconciler.reconcile()

        assert result.writes == 0
        assert store.writes() == []

    def test_type_is_copied(self, store, reconciler):
        store.put_secret(make_source(type="kubernetes.io/dockerconfigjson"))

        reconciler.reconcile()

        assert store.peek("a", "secretA").type == "kubernetes.io/dockerconfigjson"

    def test_unrelated_secret_is_never_clobbered(self, store, reconciler):
        """Test an unmanaged secret occupying the target name survives every cycle."""
        occupant = store.put_secret(
            make_secret("b", "secretA", data={"mine": b"1"}, annotations={"team": "b"})
        )
        store.put_secret(make_source())

        first = reconciler.reconcile()
        reconciler.reconcile()

        assert first.created == ["a/secretA", "c/secretA"]
        assert first.occupied == 1
        assert "b/secretA" not in write_keys(store)
        assert store.peek("b", "secretA") == occupant

    def test_same_name_sources_are_never_overwritten(self, store, reconciler):
        store.put_secret(make_source("default", "shared", data={"v": b"1"}))
        store.put_secret(make_source("a", "shared", data={"v": b"2"}))

        reconciler.reconcile()
        reconciler.reconcile()

        assert store.peek("default", "shared").data == {"v": b"1"}
        assert store.peek("a", "shared").data == {"v": b"2"}
        assert store.peek("a", "shared").annotations == {"duplicate": "true"}
        assert write_keys(store, "update") == []
        assert write_keys(store, "delete") == []

    def test_terminating_namespace_not_targeted(self, store, reconciler):
        """Test creation skips terminating namespaces and copies there are left alone."""
        store.add_namespace("gone", phase="Terminating")
        store.add_namespace("leaving", phase="Terminating")
        store.put_secret(make_source(data={"foo": b"new"}))
        stale = store.put_secret(make_duplicate("leaving", "default/secretA", data={"foo": b"old"}))
        orphan = store.put_secret(make_duplicate("leaving", "default/goneSecret", name="goneSecret"))

        result = reconciler.reconcile()

        assert result.eligible_namespaces == 4
        assert store.peek("gone", "secretA") is None
        assert store.peek("leaving", "secretA") == stale
        assert store.peek("leaving", "goneSecret") == orphan
        assert not [k for k in write_keys(store) if k.startswith(("gone/", "leaving/"))]

    def test_source_namespace_skipped(self, store, reconciler):
        store.put_secret(make_source("a", "secretA"))

        result = reconciler.reconcile()

        assert "a/secretA" not in result.created
        assert sorted(result.created) == ["b/secretA", "c/secretA", "default/secretA"]


class TestDriftCorrection:
    """Tests for restoring out-of-sync duplicates."""

    def test_tampered_copy_restored(self, store, reconciler):
        store.put_secret(make_source(data={"foo": b"bar"}))
        reconciler.reconcile()
        store.put_secret(make_duplicate("b", "default/secretA", data={"tampered": b"1"}))
        store.reset_operations()

        result = reconciler.reconcile()

        assert result.updated == ["b/secretA"]
        assert store.peek("b", "secretA").data == {"foo": b"bar"}
        assert write_keys(store) == ["b/secretA"]

    def test_source_change_propagates(self, store, reconciler):
        store.put_secret(make_source(data={"token": b"old"}))
        reconciler.reconcile()

        store.put_secret(make_source(data={"token": b"new"}))
        result = reconciler.reconcile()

        assert sorted(result.updated) == ["a/secretA", "b/secretA", "c/secretA"]
        assert store.peek("c", "secretA").data == {"token": b"new"}

    def test_type_drift_corrected(self, store, reconciler):
        store.put_secret(make_source())
        reconciler.reconcile()
        store.put_secret(make_duplicate("a", "default/secretA", type="kubernetes.io/tls"))

        result = reconciler.reconcile()

        assert result.updated == ["a/secretA"]
        assert store.peek("a", "secretA").type == "Opaque"

    def test_update_overwrites_extra_metadata(self, store, reconciler):
        store.put_secret(make_source())
        reconciler.reconcile()
        store.put_secret(
            make_secret(
                "a", "secretA", data={"x": b"y"},
                annotations={"source": "default/secretA", "note": "edited"},
            )
        )

        reconciler.reconcile()

        assert store.peek("a", "secretA").annotations == {"source": "default/secretA"}

    def test_renamed_copy_updated_under_its_own_name(self, store, reconciler):
        """Test a copy whose name differs from its source is repaired in place."""
        store.put_secret(make_source(data={"foo": b"new"}))
        store.put_secret(make_duplicate("b", "default/secretA", name="other", data={"foo": b"old"}))

        result = reconciler.reconcile()
        second = reconciler.reconcile()

        assert "b/other" in result.updated
        assert store.peek("b", "other").data == {"foo": b"new"}
        assert store.peek("b", "secretA").data == {"foo": b"new"}
        assert second.writes == 0


class TestOrphanCleanup:
    """Tests for deleting duplicates whose source is gone."""

    def test_deleted_source_removes_all_copies(self, store, reconciler):
        store.put_secret(make_source())
        reconciler.reconcile()
        store.remove_secret("default", "secretA")

        result = reconciler.reconcile()

        assert sorted(result.deleted) == ["a/secretA", "b/secretA", "c/secretA"]
        for namespace in ("a", "b", "c"):
            with pytest.raises(NotFoundError):
                store.get_secret(namespace, "secretA")

    def test_unmarked_source_removes_copies_only(self, store, reconciler):
        """Test dropping the marker deletes copies but not the former source or unrelated secrets."""
        store.put_secret(make_secret("c", "secretA", data={"own": b"1"}))
        store.put_secret(make_source())
        reconciler.reconcile()

        store.put_secret(make_secret("default", "secretA", annotations={}))
        result = reconciler.reconcile()

        assert sorted(result.deleted) == ["a/secretA", "b/secretA"]
        assert store.peek("default", "secretA") is not None
        assert store.peek("c", "secretA").data == {"own": b"1"}

    def test_malformed_reference_is_ignored(self, store, reconciler):
        stray = store.put_secret(
            make_secret("a", "secretA", data={"x": b"1"}, annotations={"source": "secretA"})
        )
        store.put_secret(make_source())

        reconciler.reconcile()
        reconciler.reconcile()

        assert store.peek("a", "secretA") == stray
        assert "a/secretA" not in write_keys(store)

    def test_lone_slash_reference_is_deleted_as_orphan(self, store, reconciler):
        store.put_secret(make_secret("a", "weird", annotations={"source": "/"}))

        result = reconciler.reconcile()

        assert result.deleted == ["a/weird"]
        assert store.peek("a", "weird") is None

    def test_copy_referencing_other_namespace_source(self, store, reconciler):
        """Test the identity key includes the namespace, not only the name."""
        store.put_secret(make_source("default", "secretA"))
        store.put_secret(make_duplicate("b", "c/secretA"))

        result = reconciler.reconcile()

        assert "b/secretA" in result.deleted


class TestFailures:
    """Tests for partial failures and benign races."""

    def test_listing_failure_aborts_cycle(self, store, reconciler, registry):
        store.put_secret(make_source())
        store.fail_next("list_namespaces", StoreError("connection refused", status=503))

        with pytest.raises(ListingError) as exc_info:
            reconciler.reconcile()

        assert exc_info.value.kind == "namespaces"
        assert exc_info.value.retryable is True
        assert store.writes() == []
        assert registry.counter("reconcile_errors_total").get(labels={"reason": "listing"}) == 1

    def test_failed_create_does_not_stop_the_pass(self, store, reconciler):
        store.put_secret(make_source())
        store.fail_next("create", StoreError("internal error", status=500), key="b/secretA")

        with pytest.raises(ReconcileFailed) as exc_info:
            reconciler.reconcile()

        result = exc_info.value.result
        assert result.created == ["a/secretA", "c/secretA"]
        assert len(result.failures) == 1
        failure = result.failures[0]
        assert failure.operation == "create"
        assert failure.key == "b/secretA"
        assert failure.status == 500

    def test_retry_after_failure_converges(self, store, reconciler):
        store.put_secret(make_source())
        store.fail_next("create", StoreError("internal error", status=500), key="b/secretA")
        with pytest.raises(ReconcileFailed):
            reconciler.reconcile()

        result = reconciler.reconcile()

        assert result.created == ["b/secretA"]

    def test_already_exists_on_create_is_benign(self, store, reconciler, registry):
        store.put_secret(make_source())
        store.fail_next("create", AlreadyExistsError("exists"), key="a/secretA")

        result = reconciler.reconcile()

        assert result.ok
        assert result.created == ["b/secretA", "c/secretA"]
        assert registry.counter("operations_total").get(
            labels={"operation": "create", "result": "exists"}
        ) == 1

    def test_not_found_on_delete_is_benign(self, store, reconciler):
        store.put_secret(make_duplicate("a", "default/gone"))
        store.fail_next("delete", NotFoundError("gone"))

        result = reconciler.reconcile()

        assert result.ok
        assert result.deleted == []

    def test_update_conflict_is_retryable(self, store, reconciler):
        store.put_secret(make_source())
        store.put_secret(make_duplicate("a", "default/secretA", data={"old": b"1"}))
        store.fail_next("update", ConflictError("modified"))

        with pytest.raises(ReconcileFailed) as exc_info:
            reconciler.reconcile()

        assert exc_info.value.result.failures[0].operation == "update"
        assert exc_info.value.retryable is True

    def test_failed_get_recorded_and_skipped(self, store, reconciler):
        store.put_secret(make_source())
        store.fail_next("get", StoreError("timeout", status=504), key="a/secretA")

        with pytest.raises(ReconcileFailed) as exc_info:
            reconciler.reconcile()

        assert exc_info.value.result.failures[0].operation == "get"
        assert "a/secretA" not in write_keys(store)

    def test_creating_in_vanished_namespace_fails_softly(self, store, reconciler):
        store.put_secret(make_source())
        store.fail_next("create", NotFoundError('namespaces "c" not found'), key="c/secretA")

        with pytest.raises(ReconcileFailed) as exc_info:
            reconciler.reconcile()

        assert exc_info.value.result.created == ["a/secretA", "b/secretA"]

    def test_last_success_only_set_on_clean_cycle(self, store, reconciler):
        store.put_secret(make_source())
        store.fail_next("create", StoreError("boom"), key="a/secretA")

        with pytest.raises(ReconcileFailed):
            reconciler.reconcile()
        assert reconciler.last_success is None

        reconciler.reconcile()
        assert reconciler.last_success is not None


class TestDryRunAndCancel:
    """Tests for dry-run mode and cancellation."""

    def test_dry_run_reports_without_writing(self, store, registry):
        store.put_secret(make_source())
        store.put_secret(make_duplicate("a", "default/orphan"))
        reconciler = Reconciler(store, dry_run=True, registry=registry)

        result = reconciler.reconcile()

        assert result.dry_run is True
        assert result.created == ["a/secretA", "b/secretA", "c/secretA"]
        assert result.deleted == ["a/orphan"]
        assert store.writes() == []

    def test_cancelled_before_start(self, store, reconciler):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(ReconcileCancelled):
            reconciler.reconcile(FULL_RESYNC, cancel=cancel)

        assert store.operations == []


class TestResultAndMetrics:
    """Tests for the cycle result and the metrics it records."""

    def test_result_fields(self, store, reconciler):
        store.put_secret(make_source())
        store.put_secret(make_secret("a", "plain"))

        result = reconciler.reconcile(ReconcileRequest(namespace="a", name="plain"))

        assert result.reconcile_id.startswith("R-")
        assert result.request == "a/plain"
        assert result.sources == 1
        assert result.duplicates == 0
        assert result.eligible_namespaces == 4
        assert result.ended_at is not None
        assert "created=3" in result.summary()

    def test_metrics_recorded(self, store, reconciler, registry):
        store.put_secret(make_source())

        reconciler.reconcile()

        assert registry.counter("reconcile_total").get() == 1
        assert registry.gauge("source_secrets").get() == 1
        assert registry.gauge("eligible_namespaces").get() == 4
        assert registry.histogram("reconcile_duration_seconds").count() == 1
        assert registry.counter("operations_total").get(
            labels={"operation": "create", "result": "ok"}
        ) == 3

    def test_reconcile_ids_are_unique(self):
        ids = {generate_reconcile_id() for _ in range(50)}

        assert len(ids) == 50
