"""Access to the Kubernetes API for the reconcilers.

All calls are rate limited, metered and return plain dicts in the same
camelCase layout kopf hands to the handlers. Every call first checks the
shared stop flag so a pass in flight stops issuing requests once the
operator shuts down.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Mapping

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException

from . import metrics
from .api.registry import ResourceRegistry
from .constants import KIND_SOPS_PROVIDER, LABEL_KEY_SECRET, LABEL_KEY_SECRET_VALUE
from .errors import ReconcileCancelledError
from .utils.rate_limit import handle_rate_limit_error, rate_limit_k8s

logger = logging.getLogger(__name__)


def load_kubernetes_config() -> None:
    """Load in-cluster configuration, falling back to the local kubeconfig."""
    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()


class ResourceStore:
    """Thin wrapper over the CoreV1 and CustomObjects APIs."""

    def __init__(
        self,
        registry: ResourceRegistry,
        core_api: client.CoreV1Api | None = None,
        custom_api: client.CustomObjectsApi | None = None,
        stop_event: threading.Event | None = None,
    ):
        self.registry = registry
        self.core_api = core_api or client.CoreV1Api()
        self.custom_api = custom_api or client.CustomObjectsApi()
        self.stop_event = stop_event or threading.Event()
        self._serializer = client.ApiClient()
        # resourceVersion of the last secret write per (namespace, name); None after a delete
        self._own_writes: dict[tuple[str, str], str | None] = {}

    def _call(self, operation: str, fn: Callable[..., Any], **kwargs: Any) -> Any:
        attempt = 0
        while True:
            if self.stop_event.is_set():
                raise ReconcileCancelledError(f"operator is stopping, {operation} cancelled")

            start_time = time.time()
            try:
                result = rate_limit_k8s(fn)(**kwargs)
                metrics.api_call_total.labels(api_type="k8s", operation=operation, result="success").inc()
                return result
            except ApiException as e:
                metrics.api_call_total.labels(api_type="k8s", operation=operation, result="error").inc()
                if handle_rate_limit_error(e, attempt):
                    attempt += 1
                    continue
                raise
            finally:
                duration = time.time() - start_time
                metrics.api_call_duration_seconds.labels(api_type="k8s", operation=operation).observe(duration)

    def _to_dict(self, obj: Any) -> Any:
        if isinstance(obj, dict):
            return obj
        return self._serializer.sanitize_for_serialization(obj)

    # Custom resources

    def list_resources(self, kind: str) -> list[dict[str, Any]]:
        rk = self.registry.get(kind)
        result = self._call(
            f"list_{rk.plural}",
            self.custom_api.list_cluster_custom_object,
            group=rk.group,
            version=rk.version,
            plural=rk.plural,
        )
        return list(result.get("items") or [])

    def get_resource(self, kind: str, name: str, namespace: str | None = None) -> dict[str, Any]:
        rk = self.registry.get(kind)
        if rk.namespaced:
            return self._call(
                f"get_{rk.plural}",
                self.custom_api.get_namespaced_custom_object,
                group=rk.group,
                version=rk.version,
                namespace=namespace,
                plural=rk.plural,
                name=name,
            )
        return self._call(
            f"get_{rk.plural}",
            self.custom_api.get_cluster_custom_object,
            group=rk.group,
            version=rk.version,
            plural=rk.plural,
            name=name,
        )

    def replace_status(self, kind: str, body: dict[str, Any]) -> dict[str, Any]:
        """Replace the status subresource; ``body`` must carry a resourceVersion."""
        rk = self.registry.get(kind)
        meta = body.get("metadata") or {}
        if rk.namespaced:
            return self._call(
                f"replace_{rk.plural}_status",
                self.custom_api.replace_namespaced_custom_object_status,
                group=rk.group,
                version=rk.version,
                namespace=meta.get("namespace"),
                plural=rk.plural,
                name=meta.get("name"),
                body=body,
            )
        return self._call(
            f"replace_{rk.plural}_status",
            self.custom_api.replace_cluster_custom_object_status,
            group=rk.group,
            version=rk.version,
            plural=rk.plural,
            name=meta.get("name"),
            body=body,
        )

    def list_providers(self) -> list[dict[str, Any]]:
        return self.list_resources(KIND_SOPS_PROVIDER)

    # Core resources

    def list_namespaces(self) -> list[dict[str, Any]]:
        result = self._call("list_namespaces", self.core_api.list_namespace)
        return list(self._to_dict(result).get("items") or [])

    def list_key_secrets(self) -> list[dict[str, Any]]:
        """List the secrets carrying the key secret marker label, across all namespaces."""
        result = self._call(
            "list_key_secrets",
            self.core_api.list_secret_for_all_namespaces,
            label_selector=f"{LABEL_KEY_SECRET}={LABEL_KEY_SECRET_VALUE}",
        )
        return list(self._to_dict(result).get("items") or [])

    def read_secret(self, name: str, namespace: str) -> dict[str, Any] | None:
        """Read a secret, returning None when it does not exist."""
        try:
            result = self._call(
                "read_secret",
                self.core_api.read_namespaced_secret,
                name=name,
                namespace=namespace,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return self._to_dict(result)

    def create_secret(self, body: dict[str, Any]) -> dict[str, Any]:
        meta = body["metadata"]
        result = self._call(
            "create_secret",
            self.core_api.create_namespaced_secret,
            namespace=meta["namespace"],
            body=body,
        )
        metrics.secret_operations_total.labels(operation="create", result="success").inc()
        return self._remember(self._to_dict(result))

    def replace_secret(self, body: dict[str, Any]) -> dict[str, Any]:
        meta = body["metadata"]
        result = self._call(
            "replace_secret",
            self.core_api.replace_namespaced_secret,
            name=meta["name"],
            namespace=meta["namespace"],
            body=body,
        )
        metrics.secret_operations_total.labels(operation="update", result="success").inc()
        return self._remember(self._to_dict(result))

    def delete_secret(self, name: str, namespace: str) -> bool:
        """Delete a secret.

        Returns:
            False if the secret was already gone
        """
        try:
            self._call(
                "delete_secret",
                self.core_api.delete_namespaced_secret,
                name=name,
                namespace=namespace,
            )
        except ApiException as e:
            if e.status == 404:
                return False
            raise
        metrics.secret_operations_total.labels(operation="delete", result="success").inc()
        self._own_writes[(namespace, name)] = None
        return True

    def _remember(self, secret: dict[str, Any]) -> dict[str, Any]:
        meta = secret.get("metadata") or {}
        self._own_writes[(meta.get("namespace", ""), meta.get("name", ""))] = meta.get("resourceVersion")
        return secret

    def is_own_write(self, secret: Mapping[str, Any], deleted: bool = False) -> bool:
        """Whether a watched secret event was caused by this operator's last write to it."""
        meta = secret.get("metadata") or {}
        key = (meta.get("namespace", ""), meta.get("name", ""))
        if key not in self._own_writes:
            return False
        version = self._own_writes[key]
        if deleted:
            return version is None
        return version is not None and version == meta.get("resourceVersion")
