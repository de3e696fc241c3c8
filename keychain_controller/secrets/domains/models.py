"""Domain models for secret management."""
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from .errors import ConfigError

API_GROUP = "aqueduct.k8s.facebook.com"
API_VERSION = "v1"

KIND_SECRET = "Secret"
KIND_KEYCHAIN_SECRET = "KeychainSecret"

LAST_UPDATE_ANNOTATION = f"{API_GROUP}/last-update"
IDENTITY_DATA_KEY = "cert"

DEFAULT_TTL = "24h"
NAME_PATTERN = re.compile(r"^[A-Z0-9_]+$")
NAME_MAX_LENGTH = 150
TTL_PATTERN = re.compile(r"^([0-9]+)([smh])$")

MANAGED_SECRET_PREFIX = "keychain-"
MANAGED_SECRET_SUFFIX = "-secret"

_TTL_UNITS = {"s": "seconds", "m": "minutes", "h": "hours"}

# Managed secrets without a readable timestamp are treated as expired
NEVER = datetime.min.replace(tzinfo=timezone.utc)


def parse_ttl(text: str) -> timedelta:
    """
    Parse a TTL such as "90s", "15m" or "24h" into a timedelta.

    Only seconds, minutes and hours are accepted; days are ambiguous across locales.

    Raises:
        ConfigError: If the text does not match ^[0-9]+[smh]$, is zero or is too large
    """
    match = TTL_PATTERN.fullmatch(text or "")
    if not match:
        raise ConfigError(f"Invalid TTL '{text}': expected a number followed by s, m or h (e.g. 24h)")
    amount, unit = match.groups()
    try:
        ttl = timedelta(**{_TTL_UNITS[unit]: int(amount)})
    except (OverflowError, ValueError):
        raise ConfigError(f"Invalid TTL '{text}': duration is too large")
    if ttl <= timedelta(0):
        raise ConfigError(f"Invalid TTL '{text}': must be a positive duration")
    return ttl


def validate_name(value: str, field_name: str = "name") -> str:
    """Check a keychain secret or group name against ^[A-Z0-9_]+$ (1-150 chars)."""
    if not value:
        raise ConfigError(f"{field_name} cannot be empty")
    if len(value) > NAME_MAX_LENGTH:
        raise ConfigError(f"{field_name} '{value[:20]}...' is longer than {NAME_MAX_LENGTH} characters")
    if not NAME_PATTERN.fullmatch(value):
        raise ConfigError(f"Invalid {field_name} '{value}': allowed characters are A-Z, 0-9 and _")
    return value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def parse_timestamp(text: Optional[str]) -> datetime:
    """Parse an ISO-8601 timestamp, assuming UTC when no offset is present."""
    if not text:
        return NEVER
    try:
        value = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return NEVER
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def managed_secret_name(name: str) -> str:
    """
    Kubernetes object name for the Secret holding keychain secret `name`.

    Secret names must be DNS-1123 subdomains (lowercase, no underscores, alphanumeric
    at both ends). The mapping is one-to-one, so distinct keychain names never share
    an object.
    """
    return f"{MANAGED_SECRET_PREFIX}{name.lower().replace('_', '-')}{MANAGED_SECRET_SUFFIX}"


def keychain_name(object_name: str) -> str:
    """Inverse of managed_secret_name; names it did not produce are returned unchanged."""
    if object_name.startswith(MANAGED_SECRET_PREFIX) and object_name.endswith(MANAGED_SECRET_SUFFIX):
        inner = object_name[len(MANAGED_SECRET_PREFIX):-len(MANAGED_SECRET_SUFFIX)]
        return inner.upper().replace("-", "_")
    return object_name


@dataclass(frozen=True)
class ObjectKey:
    """Identifies one object in the store."""
    kind: str
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.kind}/{self.namespace}/{self.name}"


@dataclass
class StoredObject:
    """
    An object as the store sees it.

    For secrets `data` maps keys to bytes; for keychain secrets it holds the
    resource spec (name, group, ttl).
    """
    key: ObjectKey
    data: Dict[str, Any] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    resource_version: Optional[str] = None


@dataclass(frozen=True)
class SecretRequest:
    """A validated request to materialize one keychain secret."""
    owner_key: str
    name: str
    ttl: timedelta
    group: Optional[str] = None

    @classmethod
    def parse(cls, owner_key: str, name: str, group: Optional[str] = None,
              ttl: Optional[str] = None) -> "SecretRequest":
        """
        Build a request from raw resource fields.

        Raises:
            ConfigError: If name, group or ttl are invalid
        """
        validate_name(name, "name")
        if group:
            validate_name(group, "group")
        return cls(
            owner_key=owner_key,
            name=name,
            group=group or None,
            ttl=parse_ttl(ttl or DEFAULT_TTL),
        )

    @classmethod
    def from_object(cls, obj: StoredObject) -> "SecretRequest":
        spec = obj.data
        return cls.parse(
            owner_key=obj.key.namespace,
            name=spec.get("name", ""),
            group=spec.get("group"),
            ttl=spec.get("ttl"),
        )


@dataclass
class Identity:
    """Certificate used to authenticate fetches for one owner."""
    owner_key: str
    certificate: bytes
    resource_version: Optional[str] = None

    @classmethod
    def from_object(cls, obj: StoredObject) -> "Identity":
        return cls(
            owner_key=obj.key.name,
            certificate=obj.data.get(IDENTITY_DATA_KEY, b""),
            resource_version=obj.resource_version,
        )


@dataclass
class ManagedSecret:
    """The secret object materialized for a request."""
    owner_key: str
    name: str
    data: Dict[str, bytes]
    last_update: datetime
    resource_version: Optional[str] = None

    @staticmethod
    def key_for(owner_key: str, name: str) -> ObjectKey:
        return ObjectKey(KIND_SECRET, owner_key, managed_secret_name(name))

    @classmethod
    def from_object(cls, obj: StoredObject) -> "ManagedSecret":
        return cls(
            owner_key=obj.key.namespace,
            name=keychain_name(obj.key.name),
            data=dict(obj.data),
            last_update=parse_timestamp(obj.annotations.get(LAST_UPDATE_ANNOTATION)),
            resource_version=obj.resource_version,
        )

    def to_object(self) -> StoredObject:
        return StoredObject(
            key=self.key_for(self.owner_key, self.name),
            data=dict(self.data),
            annotations={LAST_UPDATE_ANNOTATION: format_timestamp(self.last_update)},
            resource_version=self.resource_version,
        )

    def next_rotation(self, ttl: timedelta) -> Optional[datetime]:
        """When last_update + ttl passes; None if that lies beyond datetime.max."""
        try:
            return self.last_update + ttl
        except OverflowError:
            return None

    def is_due(self, ttl: timedelta, now: datetime) -> bool:
        """True once last_update + ttl has passed."""
        if self.last_update == NEVER:
            return True
        deadline = self.next_rotation(ttl)
        return deadline is not None and deadline <= now
