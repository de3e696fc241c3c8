"""Object store backed by the Kubernetes API."""
import base64
import logging
from typing import Any, Dict, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from .errors import AlreadyExistsError, ConflictError, ObjectNotFoundError, StoreError
from .models import API_GROUP, API_VERSION, KIND_KEYCHAIN_SECRET, KIND_SECRET, ObjectKey, StoredObject

logger = logging.getLogger(__name__)

KEYCHAIN_SECRET_PLURAL = "keychainsecrets"
MANAGED_BY_LABEL = {"app.kubernetes.io/managed-by": "keychain-controller"}


def _encode(data: Dict[str, bytes]) -> Dict[str, str]:
    return {key: base64.b64encode(value).decode("ascii") for key, value in data.items()}


def _decode(data: Optional[Dict[str, str]]) -> Dict[str, bytes]:
    return {key: base64.b64decode(value) for key, value in (data or {}).items()}


def _translate(e: ApiException, key: ObjectKey, verb: str) -> StoreError:
    if e.status == 404:
        return ObjectNotFoundError(f"{key} not found", key)
    if e.status == 409 and verb == "create":
        return AlreadyExistsError(f"{key} already exists", key)
    if e.status == 409:
        return ConflictError(f"{key} was modified concurrently: {e.reason}", key)
    return StoreError(f"Failed to {verb} {key}: {e.status} {e.reason}", key)


class KubernetesStore:
    """
    Stores Secrets through CoreV1Api and KeychainSecrets through CustomObjectsApi.

    Patches carry the baseline's resourceVersion, so the API server rejects them
    with 409 Conflict when the object changed after it was read.
    """

    def __init__(self, core_api: Optional[client.CoreV1Api] = None,
                 custom_api: Optional[client.CustomObjectsApi] = None):
        self.core_api = core_api or client.CoreV1Api()
        self.custom_api = custom_api or client.CustomObjectsApi()

    @classmethod
    def from_environment(cls) -> "KubernetesStore":
        """Use in-cluster credentials, falling back to the local kubeconfig."""
        try:
            config.load_incluster_config()
            logger.info("Using in-cluster Kubernetes configuration")
        except config.ConfigException:
            config.load_kube_config()
            logger.info("Using local kubeconfig")
        return cls()

    def get(self, key: ObjectKey) -> StoredObject:
        try:
            if key.kind == KIND_SECRET:
                return self._secret_to_object(self.core_api.read_namespaced_secret(key.name, key.namespace))
            if key.kind == KIND_KEYCHAIN_SECRET:
                raw = self.custom_api.get_namespaced_custom_object(
                    API_GROUP, API_VERSION, key.namespace, KEYCHAIN_SECRET_PLURAL, key.name
                )
                return self._custom_to_object(raw)
        except ApiException as e:
            raise _translate(e, key, "get") from e
        except (HTTPError, OSError) as e:
            raise StoreError(f"Failed to get {key}: {e}", key) from e
        raise StoreError(f"Unsupported kind: {key.kind}", key)

    def create(self, obj: StoredObject) -> StoredObject:
        if obj.key.kind != KIND_SECRET:
            raise StoreError(f"Creating {obj.key.kind} objects is not supported", obj.key)
        body = client.V1Secret(
            metadata=client.V1ObjectMeta(
                name=obj.key.name,
                namespace=obj.key.namespace,
                annotations=dict(obj.annotations) or None,
                labels=dict(MANAGED_BY_LABEL),
            ),
            data=_encode(obj.data),
        )
        try:
            created = self.core_api.create_namespaced_secret(obj.key.namespace, body)
        except ApiException as e:
            logger.error(f"Failed to create {obj.key}: {e.status} {e.reason}")
            raise _translate(e, obj.key, "create") from e
        except (HTTPError, OSError) as e:
            logger.error(f"Failed to create {obj.key}: {e}")
            raise StoreError(f"Failed to create {obj.key}: {e}", obj.key) from e
        logger.info(f"Created Secret {obj.key.name} in namespace {obj.key.namespace}")
        return self._secret_to_object(created)

    def patch(self, obj: StoredObject, baseline: StoredObject) -> StoredObject:
        if obj.key.kind != KIND_SECRET:
            raise StoreError(f"Patching {obj.key.kind} objects is not supported", obj.key)
        body: Dict[str, Any] = {
            "metadata": {
                "resourceVersion": baseline.resource_version,
                "annotations": dict(obj.annotations),
            },
            "data": _encode(obj.data),
        }
        try:
            patched = self.core_api.patch_namespaced_secret(obj.key.name, obj.key.namespace, body)
        except ApiException as e:
            logger.error(f"Failed to patch {obj.key}: {e.status} {e.reason}")
            raise _translate(e, obj.key, "patch") from e
        except (HTTPError, OSError) as e:
            logger.error(f"Failed to patch {obj.key}: {e}")
            raise StoreError(f"Failed to patch {obj.key}: {e}", obj.key) from e
        logger.info(f"Patched Secret {obj.key.name} in namespace {obj.key.namespace}")
        return self._secret_to_object(patched)

    @staticmethod
    def _secret_to_object(secret: client.V1Secret) -> StoredObject:
        meta = secret.metadata
        return StoredObject(
            key=ObjectKey(KIND_SECRET, meta.namespace, meta.name),
            data=_decode(secret.data),
            annotations=dict(meta.annotations or {}),
            resource_version=meta.resource_version,
        )

    @staticmethod
    def _custom_to_object(raw: Dict[str, Any]) -> StoredObject:
        meta = raw.get("metadata", {})
        return StoredObject(
            key=ObjectKey(KIND_KEYCHAIN_SECRET, meta.get("namespace", ""), meta.get("name", "")),
            data=dict(raw.get("spec") or {}),
            annotations=dict(meta.get("annotations") or {}),
            resource_version=meta.get("resourceVersion"),
        )
