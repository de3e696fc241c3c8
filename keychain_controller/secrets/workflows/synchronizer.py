"""Workflow for materializing a keychain secret and rotating it on its TTL."""
import logging
from datetime import datetime
from typing import Callable, Optional

from ..domains.command import CommandRunner
from ..domains.config_loader import ControllerConfig
from ..domains.errors import ObjectNotFoundError
from ..domains.events import EventSink, LoggingEventSink
from ..domains.models import Identity, ManagedSecret, SecretRequest, utcnow
from ..domains.store import ObjectStore
from ..domains.template import to_command_spec

logger = logging.getLogger(__name__)


class SecretSynchronizer:
    """Creates, rotates or leaves alone the secret backing one request."""

    def __init__(self, store: ObjectStore, runner: CommandRunner, config: ControllerConfig,
                 events: Optional[EventSink] = None, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.runner = runner
        self.config = config
        self.events = events or LoggingEventSink(logger)
        self.clock = clock
        self._expander = config.secret_expander()

    def fetch(self, request: SecretRequest) -> bytes:
        """Run the secret-fetch command and return its output."""
        line = self._expander.expand({
            "name": request.name,
            "group": request.group or "",
            "owner_key": request.owner_key,
        })
        spec = to_command_spec(line, self.config.timeout_seconds, self.config.split_arguments)
        return self.runner.run(spec)

    def read(self, request: SecretRequest) -> Optional[ManagedSecret]:
        """Current managed secret for the request, or None when it doesn't exist yet."""
        try:
            obj = self.store.get(ManagedSecret.key_for(request.owner_key, request.name))
        except ObjectNotFoundError:
            return None
        return ManagedSecret.from_object(obj)

    def sync(self, request: SecretRequest, identity: Identity,
             existing: Optional[ManagedSecret] = None) -> ManagedSecret:
        """
        Create the managed secret, rotate it once its TTL has passed, or leave it.

        Args:
            request: Validated request
            identity: Owner identity; provisioned before anything is fetched for the owner
            existing: Previously read secret; read from the store when not given

        Raises:
            CommandError: Fetch failed
            StoreError: Create or patch failed (ConflictError if the secret changed
                since it was read)
        """
        if existing is None:
            existing = self.read(request)
        now = self.clock()

        if existing is None:
            managed = ManagedSecret(
                owner_key=request.owner_key,
                name=request.name,
                data={request.name: self.fetch(request)},
                last_update=now,
            )
            created = self.store.create(managed.to_object())
            self.events.emit("secret.created", owner=request.owner_key, name=request.name,
                             identity=identity.owner_key)
            return ManagedSecret.from_object(created)

        if existing.is_due(request.ttl, now):
            rotated = ManagedSecret(
                owner_key=request.owner_key,
                name=request.name,
                data={request.name: self.fetch(request)},
                last_update=now,
            )
            patched = self.store.patch(rotated.to_object(), existing.to_object())
            self.events.emit("secret.rotated", owner=request.owner_key, name=request.name,
                             identity=identity.owner_key, previous_update=existing.last_update.isoformat())
            return ManagedSecret.from_object(patched)

        next_rotation = existing.next_rotation(request.ttl)
        self.events.emit("secret.unchanged", owner=request.owner_key, name=request.name,
                         next_rotation=next_rotation.isoformat() if next_rotation else "never")
        return existing
