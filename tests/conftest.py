"""Shared fixtures: in-memory store, stub command runner, recording event sink."""
from datetime import datetime, timedelta, timezone

import pytest

from keychain_controller.secrets.domains.config_loader import ControllerConfig
from keychain_controller.secrets.domains.errors import ObjectNotFoundError
from keychain_controller.secrets.domains.models import KIND_KEYCHAIN_SECRET, ObjectKey, StoredObject
from keychain_controller.secrets.domains.store import InMemoryStore

START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class RecordingEventSink:
    """Keeps every emitted event for assertions."""

    def __init__(self):
        self.events = []

    def emit(self, event, **fields):
        self.events.append((event, fields))

    def names(self):
        return [name for name, _ in self.events]


class StubRunner:
    """Returns queued outputs (or raises queued errors) instead of spawning processes."""

    def __init__(self, *outputs):
        self.outputs = list(outputs)
        self.specs = []

    def run(self, spec):
        self.specs.append(spec)
        result = self.outputs.pop(0) if len(self.outputs) > 1 else self.outputs[0]
        if isinstance(result, Exception):
            raise result
        return result


class FakeClock:
    def __init__(self, now=START):
        self.now = now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)

    def __call__(self):
        return self.now


class CountingStore(InMemoryStore):
    """InMemoryStore that counts writes."""

    def __init__(self):
        super().__init__()
        self.creates = 0
        self.patches = 0

    def create(self, obj):
        self.creates += 1
        return super().create(obj)

    def patch(self, obj, baseline):
        self.patches += 1
        return super().patch(obj, baseline)

    def exists(self, key):
        try:
            self.get(key)
        except ObjectNotFoundError:
            return False
        return True


@pytest.fixture
def config():
    return ControllerConfig(
        controller_namespace="keychain-system",
        generate_cert_template="gen-cert {{ algorithm }} {{ days }} {{ subject }}",
        get_secret_template="get-secret {{ name }} {{ group }}",
        timeout_seconds=5,
        failure_backoff_seconds=300,
        retry_base_seconds=5,
        retry_max_seconds=60,
        max_retries=3,
    )


@pytest.fixture
def store():
    return CountingStore()


@pytest.fixture
def events():
    return RecordingEventSink()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def add_keychain_secret(store):
    """Put a KeychainSecret resource into the store."""
    def _add(namespace="team-a", resource="db-password", name="DB_PASSWORD", group=None, ttl="24h"):
        spec = {"name": name, "ttl": ttl}
        if group:
            spec["group"] = group
        key = ObjectKey(KIND_KEYCHAIN_SECRET, namespace, resource)
        return store.create(StoredObject(key=key, data=spec))
    return _add
