"""Object store collaborator: get, create and patch with optimistic concurrency."""
import copy
import logging
import threading
from typing import Dict, Protocol

from .errors import AlreadyExistsError, ConflictError, ObjectNotFoundError
from .models import ObjectKey, StoredObject

logger = logging.getLogger(__name__)


class ObjectStore(Protocol):
    """The three verbs the controller uses. There is no delete and no list."""

    def get(self, key: ObjectKey) -> StoredObject:
        """Raises ObjectNotFoundError when the key is absent."""
        ...

    def create(self, obj: StoredObject) -> StoredObject:
        """Raises AlreadyExistsError when the key is taken."""
        ...

    def patch(self, obj: StoredObject, baseline: StoredObject) -> StoredObject:
        """Merge obj into the stored object; raises ConflictError if baseline is stale."""
        ...


class InMemoryStore:
    """Thread-safe, versioned store with merge-patch semantics."""

    def __init__(self):
        self._objects: Dict[ObjectKey, StoredObject] = {}
        self._version = 0
        self._lock = threading.Lock()

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def get(self, key: ObjectKey) -> StoredObject:
        with self._lock:
            if key not in self._objects:
                raise ObjectNotFoundError(f"{key} not found", key)
            return copy.deepcopy(self._objects[key])

    def create(self, obj: StoredObject) -> StoredObject:
        with self._lock:
            if obj.key in self._objects:
                raise AlreadyExistsError(f"{obj.key} already exists", obj.key)
            stored = copy.deepcopy(obj)
            stored.resource_version = self._next_version()
            self._objects[obj.key] = stored
            logger.debug(f"Created {obj.key} at version {stored.resource_version}")
            return copy.deepcopy(stored)

    def patch(self, obj: StoredObject, baseline: StoredObject) -> StoredObject:
        with self._lock:
            current = self._objects.get(obj.key)
            if current is None:
                raise ObjectNotFoundError(f"{obj.key} not found", obj.key)
            if current.resource_version != baseline.resource_version:
                raise ConflictError(
                    f"{obj.key} changed: have version {baseline.resource_version}, "
                    f"store has {current.resource_version}",
                    obj.key,
                )
            patched = copy.deepcopy(current)
            patched.data.update(copy.deepcopy(obj.data))
            patched.annotations.update(obj.annotations)
            patched.resource_version = self._next_version()
            self._objects[obj.key] = patched
            logger.debug(f"Patched {obj.key} to version {patched.resource_version}")
            return copy.deepcopy(patched)
