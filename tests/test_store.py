"""Tests for the in-memory object store."""
import pytest

from keychain_controller.secrets.domains.errors import AlreadyExistsError, ConflictError, ObjectNotFoundError
from keychain_controller.secrets.domains.models import KIND_SECRET, ObjectKey, StoredObject
from keychain_controller.secrets.domains.store import InMemoryStore

KEY = ObjectKey(KIND_SECRET, "team-a", "DB_PASSWORD")


class TestInMemoryStore:
    """Test suite for InMemoryStore."""

    def test_get_missing_raises_not_found(self):
        with pytest.raises(ObjectNotFoundError):
            InMemoryStore().get(KEY)

    def test_create_assigns_version(self):
        store = InMemoryStore()
        created = store.create(StoredObject(key=KEY, data={"a": b"1"}))

        assert created.resource_version == "1"
        assert store.get(KEY).data == {"a": b"1"}

    def test_create_twice_raises_already_exists(self):
        store = InMemoryStore()
        store.create(StoredObject(key=KEY))
        with pytest.raises(AlreadyExistsError):
            store.create(StoredObject(key=KEY))

    def test_patch_merges_and_bumps_version(self):
        store = InMemoryStore()
        baseline = store.create(StoredObject(key=KEY, data={"a": b"1", "b": b"2"}, annotations={"x": "1"}))

        patched = store.patch(StoredObject(key=KEY, data={"a": b"9"}, annotations={"y": "2"}), baseline)

        assert patched.data == {"a": b"9", "b": b"2"}
        assert patched.annotations == {"x": "1", "y": "2"}
        assert patched.resource_version != baseline.resource_version

    def test_patch_with_stale_baseline_conflicts(self):
        store = InMemoryStore()
        baseline = store.create(StoredObject(key=KEY, data={"a": b"1"}))
        store.patch(StoredObject(key=KEY, data={"a": b"2"}), baseline)

        with pytest.raises(ConflictError) as exc_info:
            store.patch(StoredObject(key=KEY, data={"a": b"3"}), baseline)

        assert exc_info.value.retryable
        assert store.get(KEY).data == {"a": b"2"}

    def test_returned_objects_are_copies(self):
        store = InMemoryStore()
        created = store.create(StoredObject(key=KEY, data={"a": b"1"}))
        created.data["a"] = b"changed"

        assert store.get(KEY).data == {"a": b"1"}
