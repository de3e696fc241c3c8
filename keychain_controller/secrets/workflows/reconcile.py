"""Reconciliation entry point for KeychainSecret resources."""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..domains.command import CommandRunner
from ..domains.config_loader import ControllerConfig
from ..domains.errors import ConfigError, KeychainError, ObjectNotFoundError
from ..domains.events import EventSink, LoggingEventSink
from ..domains.models import KIND_KEYCHAIN_SECRET, ObjectKey, SecretRequest, utcnow
from ..domains.store import ObjectStore
from .identity import IdentityProvisioner
from .synchronizer import SecretSynchronizer

logger = logging.getLogger(__name__)

# Exponent cap for the identity backoff, long past retry_max_seconds
_MAX_BACKOFF_EXPONENT = 32


@dataclass
class ReconcileResult:
    """
    Outcome of one reconcile cycle, for the hosting scheduler.

    requeue_after is None when nothing should be scheduled: the resource is gone,
    the error cannot be fixed by retrying, or the retry budget is spent.
    """
    requeue_after: Optional[timedelta] = None
    error: Optional[KeychainError] = None
    stage: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def requeue(self) -> bool:
        return self.requeue_after is not None


class ReconciliationLoop:
    """Provisions the owner identity, then syncs the secret, for one resource per call."""

    def __init__(self, store: ObjectStore, config: ControllerConfig,
                 runner: Optional[CommandRunner] = None,
                 events: Optional[EventSink] = None,
                 clock: Callable[[], datetime] = utcnow,
                 provisioner: Optional[IdentityProvisioner] = None,
                 synchronizer: Optional[SecretSynchronizer] = None):
        self.store = store
        self.config = config
        self.events = events or LoggingEventSink(logger)
        runner = runner or CommandRunner(self.events)
        self.provisioner = provisioner or IdentityProvisioner(store, runner, config, self.events)
        self.synchronizer = synchronizer or SecretSynchronizer(store, runner, config, self.events, clock)

    def identity_backoff(self, failures: int) -> timedelta:
        """Exponential backoff for identity failures, capped at retry_max_seconds."""
        exponent = min(max(failures, 0), _MAX_BACKOFF_EXPONENT)
        seconds = min(self.config.retry_base_seconds * (2 ** exponent), self.config.retry_max_seconds)
        return timedelta(seconds=seconds)

    def reconcile(self, owner_key: str, resource_name: str, failures: int = 0) -> ReconcileResult:
        """
        Run one reconcile cycle. Never raises for per-resource errors.

        Args:
            owner_key: Namespace of the KeychainSecret
            resource_name: Name of the KeychainSecret
            failures: Consecutive failed cycles the scheduler has seen for this resource

        Returns:
            ReconcileResult; on success requeue_after is the request's TTL
        """
        key = ObjectKey(KIND_KEYCHAIN_SECRET, owner_key, resource_name)

        try:
            obj = self.store.get(key)
        except ObjectNotFoundError:
            # Deleted; a new event will arrive if it comes back.
            self.events.emit("reconcile.skipped", resource=str(key), reason="not found")
            return ReconcileResult()
        except KeychainError as e:
            return self._failed(key, "fetch", e, failures, self.identity_backoff(failures))

        try:
            request = SecretRequest.from_object(obj)
        except ConfigError as e:
            return self._failed(key, "parse", e, failures, None)

        try:
            identity = self.provisioner.get_or_create(owner_key)
        except KeychainError as e:
            return self._failed(key, "identity", e, failures, self.identity_backoff(failures))

        try:
            self.synchronizer.sync(request, identity)
        except KeychainError as e:
            return self._failed(key, "sync", e, failures,
                                timedelta(seconds=self.config.failure_backoff_seconds))

        self.events.emit("reconcile.succeeded", resource=str(key), requeue_after=str(request.ttl))
        return ReconcileResult(requeue_after=request.ttl)

    def _failed(self, key: ObjectKey, stage: str, error: KeychainError, failures: int,
                backoff: Optional[timedelta]) -> ReconcileResult:
        requeue_after = backoff
        if not error.retryable or failures >= self.config.max_retries:
            requeue_after = None
        self.events.emit(
            "reconcile.failed",
            resource=str(key),
            stage=stage,
            error=f"{type(error).__name__}: {error}",
            failures=failures,
            requeue_after=str(requeue_after) if requeue_after else None,
        )
        return ReconcileResult(requeue_after=requeue_after, error=error, stage=stage)
