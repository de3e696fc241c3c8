"""Tests for the reconciliation loop."""
import errno
from datetime import timedelta

import pytest

from keychain_controller.secrets.domains.errors import (
    CommandExitError,
    CommandNotFoundError,
    CommandStartError,
    ConflictError,
    StoreError,
)
from keychain_controller.secrets.domains.models import KIND_SECRET, ManagedSecret, ObjectKey
from keychain_controller.secrets.workflows.reconcile import ReconcileResult, ReconciliationLoop

from conftest import START, StubRunner

SECRET_KEY = ManagedSecret.key_for("team-a", "DB_PASSWORD")
IDENTITY_KEY = ObjectKey(KIND_SECRET, "keychain-system", "team-a")


class FailingSynchronizer:
    def __init__(self, error):
        self.error = error

    def sync(self, request, identity, existing=None):
        raise self.error


@pytest.fixture
def make_loop(store, config, events, clock):
    def _make(*outputs, **kwargs):
        runner = StubRunner(*outputs)
        return ReconciliationLoop(store, config, runner=runner, events=events, clock=clock, **kwargs), runner
    return _make


class TestReconcile:
    """Test suite for ReconciliationLoop.reconcile."""

    def test_missing_resource_is_a_quiet_no_op(self, make_loop, store):
        loop, runner = make_loop(b"unused")

        result = loop.reconcile("team-a", "gone")

        assert result == ReconcileResult()
        assert result.ok and not result.requeue
        assert runner.specs == []
        assert store.creates == 0

    def test_first_cycle_provisions_identity_and_secret(self, make_loop, store, add_keychain_secret):
        add_keychain_secret(ttl="24h")
        loop, runner = make_loop(b"CERT", b"s3cret")

        result = loop.reconcile("team-a", "db-password")

        assert result.ok
        assert result.requeue_after == timedelta(hours=24)
        assert store.get(IDENTITY_KEY).data == {"cert": b"CERT"}
        assert store.get(SECRET_KEY).data == {"DB_PASSWORD": b"s3cret"}

    def test_next_deadline_follows_ttl(self, make_loop, add_keychain_secret):
        add_keychain_secret(ttl="15m")
        loop, _ = make_loop(b"CERT", b"s3cret")

        assert loop.reconcile("team-a", "db-password").requeue_after == timedelta(minutes=15)

    def test_rotation_cycle(self, make_loop, store, clock, add_keychain_secret):
        add_keychain_secret(ttl="1h")
        loop, runner = make_loop(b"CERT", b"v1", b"v2")
        loop.reconcile("team-a", "db-password")

        clock.advance(minutes=30)
        loop.reconcile("team-a", "db-password")
        assert store.patches == 0

        clock.advance(minutes=30)
        loop.reconcile("team-a", "db-password")
        assert store.patches == 1
        managed = ManagedSecret.from_object(store.get(SECRET_KEY))
        assert managed.data == {"DB_PASSWORD": b"v2"}
        assert managed.last_update == START + timedelta(hours=1)

    def test_invalid_ttl_is_reported_not_retried(self, make_loop, events, add_keychain_secret):
        add_keychain_secret(ttl="soon")
        loop, runner = make_loop(b"CERT")

        result = loop.reconcile("team-a", "db-password")

        assert not result.ok
        assert result.stage == "parse"
        assert not result.requeue
        assert runner.specs == []
        assert "reconcile.failed" in events.names()

    def test_oversized_ttl_is_reported_not_raised(self, make_loop, events, add_keychain_secret):
        add_keychain_secret(ttl="99999999999h")
        loop, runner = make_loop(b"CERT")

        result = loop.reconcile("team-a", "db-password")

        assert result.stage == "parse"
        assert not result.requeue
        assert runner.specs == []
        assert "reconcile.failed" in events.names()

    def test_identity_failure_requeues_with_backoff(self, make_loop, add_keychain_secret):
        add_keychain_secret()
        loop, _ = make_loop(CommandExitError("gen-cert", 1))

        first = loop.reconcile("team-a", "db-password", failures=0)
        second = loop.reconcile("team-a", "db-password", failures=2)

        assert first.stage == "identity"
        assert first.requeue_after == timedelta(seconds=5)
        assert second.requeue_after == timedelta(seconds=20)

    def test_identity_backoff_is_capped(self, make_loop):
        loop, _ = make_loop(b"")
        assert loop.identity_backoff(10) == timedelta(seconds=60)
        assert loop.identity_backoff(10 ** 6) == timedelta(seconds=60)

    def test_retry_budget_is_bounded(self, make_loop, add_keychain_secret):
        add_keychain_secret()
        loop, _ = make_loop(CommandExitError("gen-cert", 1))

        result = loop.reconcile("team-a", "db-password", failures=3)

        assert not result.ok
        assert not result.requeue

    def test_missing_executable_is_not_retried(self, make_loop, add_keychain_secret):
        add_keychain_secret()
        loop, _ = make_loop(CommandNotFoundError("gen-cert"))

        result = loop.reconcile("team-a", "db-password")

        assert isinstance(result.error, CommandNotFoundError)
        assert not result.requeue

    def test_unstartable_executable_is_not_retried(self, make_loop, add_keychain_secret):
        add_keychain_secret()
        loop, _ = make_loop(CommandStartError("gen-cert", OSError(errno.ENOEXEC, "Exec format error")))

        result = loop.reconcile("team-a", "db-password")

        assert result.stage == "identity"
        assert isinstance(result.error, CommandStartError)
        assert not result.requeue

    def test_sync_failure_uses_fixed_backoff(self, make_loop, add_keychain_secret):
        add_keychain_secret()
        loop, _ = make_loop(b"CERT", synchronizer=FailingSynchronizer(ConflictError("stale")))

        result = loop.reconcile("team-a", "db-password", failures=2)

        assert result.stage == "sync"
        assert isinstance(result.error, ConflictError)
        assert result.requeue_after == timedelta(minutes=5)

    def test_store_errors_reading_resource_are_retried(self, config, events):
        class BrokenStore:
            def get(self, key):
                raise StoreError("etcd unavailable", key)

        loop = ReconciliationLoop(BrokenStore(), config, runner=StubRunner(b""), events=events)
        result = loop.reconcile("team-a", "db-password")

        assert result.stage == "fetch"
        assert result.requeue_after == timedelta(seconds=5)
