"""Workflow for provisioning the per-owner certificate identity."""
import logging
from typing import Optional

from ..domains.command import CommandRunner
from ..domains.config_loader import ControllerConfig
from ..domains.errors import AlreadyExistsError, ObjectNotFoundError
from ..domains.events import EventSink, LoggingEventSink
from ..domains.models import IDENTITY_DATA_KEY, KIND_SECRET, Identity, ObjectKey, StoredObject
from ..domains.store import ObjectStore
from ..domains.template import to_command_spec

logger = logging.getLogger(__name__)


class IdentityProvisioner:
    """
    Gets or creates the certificate used to authenticate fetches for an owner.

    Identities live in the controller's namespace, named after the owner key, so
    that only the controller decides which owners get one. They are never rotated.
    """

    def __init__(self, store: ObjectStore, runner: CommandRunner, config: ControllerConfig,
                 events: Optional[EventSink] = None):
        self.store = store
        self.runner = runner
        self.config = config
        self.events = events or LoggingEventSink(logger)
        self._expander = config.cert_expander()

    def key_for(self, owner_key: str) -> ObjectKey:
        return ObjectKey(KIND_SECRET, self.config.controller_namespace, owner_key)

    def get_or_create(self, owner_key: str) -> Identity:
        """
        Return the owner's identity, provisioning it on first use.

        Raises:
            StoreError: Lookup failed for a reason other than not-found, or create failed
            CommandError: The provisioning command failed
            ConfigError: The provisioning template could not be rendered
        """
        key = self.key_for(owner_key)
        try:
            existing = self.store.get(key)
            self.events.emit("identity.found", owner=owner_key)
            return Identity.from_object(existing)
        except ObjectNotFoundError:
            pass

        line = self._expander.expand({
            "algorithm": self.config.algorithm,
            "days": self.config.days,
            "subject": self.config.subject,
            "owner_key": owner_key,
        })
        spec = to_command_spec(line, self.config.timeout_seconds, self.config.split_arguments)
        cert = self.runner.run(spec)

        try:
            created = self.store.create(StoredObject(key=key, data={IDENTITY_DATA_KEY: cert}))
        except AlreadyExistsError:
            # A concurrent reconcile for the same owner won the race; use its identity.
            self.events.emit("identity.race_lost", owner=owner_key)
            return Identity.from_object(self.store.get(key))

        self.events.emit("identity.created", owner=owner_key, namespace=key.namespace)
        return Identity.from_object(created)
