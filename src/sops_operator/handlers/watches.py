"""Re-run secret reconciliation when something a resource depends on changes.

Outside these watches a SopsSecret or GlobalSopsSecret is only reconciled
when its own spec changes and on the resync timer. The Secrets it owns, the
status of the providers it decrypts with and, for GlobalSopsSecret, the
namespaces its items land in are watched here so a pass runs as soon as one
of them changes.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

import kopf
from kubernetes.client.exceptions import ApiException

from ..api.models import SopsSecretStatus
from ..config import OperatorConfig
from ..constants import API_GROUP_VERSION, KIND_GLOBAL_SOPS_SECRET, KIND_SOPS_PROVIDER, KIND_SOPS_SECRET
from ..store import ResourceStore
from ..utils.conditions import is_ready
from ..utils.secrets import controller_of
from . import global_sops_secret, sops_secret
from .base import plain
from .provider import cached_namespaces
from .secrets import SecretsHandler

logger = logging.getLogger(__name__)

SECRET_HANDLERS: dict[str, SecretsHandler] = {
    KIND_SOPS_SECRET: sops_secret._handler,
    KIND_GLOBAL_SOPS_SECRET: global_sops_secret._handler,
}


def owner_of(secret: Mapping[str, Any]) -> tuple[str, str, str | None] | None:
    """Return ``(kind, name, namespace)`` of the resource controlling a Secret, if it is one of ours."""
    ref = controller_of(secret)
    if not ref or ref.get("apiVersion") != API_GROUP_VERSION or ref.get("kind") not in SECRET_HANDLERS:
        return None
    namespace = (secret.get("metadata") or {}).get("namespace") if ref["kind"] == KIND_SOPS_SECRET else None
    return ref["kind"], ref.get("name", ""), namespace


def requeue_resource(
    kind: str,
    name: str,
    namespace: str | None,
    store: ResourceStore,
    config: OperatorConfig,
) -> bool:
    """Fetch a resource and run a pass for it; a resource that is gone is skipped."""
    try:
        resource = store.get_resource(kind, name, namespace)
    except ApiException as e:
        if e.status == 404:
            logger.debug(f"{kind} {name} is gone, nothing to requeue")
            return False
        raise
    return SECRET_HANDLERS[kind].requeue(resource, store, config)


def provider_dependents(provider: Mapping[str, Any], store: ResourceStore) -> list[tuple[str, dict[str, Any]]]:
    """List the resources a provider decrypts for.

    A resource depends on the provider when the provider selects it now or
    when its status still lists the provider from an earlier pass.
    """
    provider_name = (provider.get("metadata") or {}).get("name")
    list_namespaces = cached_namespaces(store)

    dependents = []
    for kind, handler in SECRET_HANDLERS.items():
        for resource in store.list_resources(kind):
            listed = any(
                origin.name == provider_name
                for origin in SopsSecretStatus.from_dict(resource.get("status")).providers
            )
            if listed or handler.selected_by(provider, resource, list_namespaces):
                dependents.append((kind, resource))
    return dependents


def requeue_provider_dependents(provider: Mapping[str, Any], store: ResourceStore, config: OperatorConfig) -> int:
    """Run a pass for every resource depending on a provider.

    Returns:
        Number of resources requeued
    """
    dependents = provider_dependents(provider, store)
    for kind, resource in dependents:
        SECRET_HANDLERS[kind].requeue(resource, store, config)
    return len(dependents)


def _is_owned_secret(body: Mapping[str, Any], **_: Any) -> bool:
    return owner_of(body) is not None


@kopf.on.event("v1", "secrets", when=_is_owned_secret)
def handle_owned_secret_event(
    type: str | None,
    body: kopf.Body,
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """Restore a materialized Secret that was changed or deleted by someone else."""
    if type not in ("MODIFIED", "DELETED"):
        return

    secret = plain(body)
    if memo.store.is_own_write(secret, deleted=type == "DELETED"):
        return

    owner = owner_of(secret)
    if owner is None:
        return
    kind, name, namespace = owner
    meta = secret.get("metadata") or {}
    logger.info(
        f"Secret {meta.get('namespace')}/{meta.get('name')} {type.lower()} outside the operator, "
        f"requeue {kind} {name}"
    )
    requeue_resource(kind, name, namespace, memo.store, memo.config)


@kopf.on.event(API_GROUP_VERSION, KIND_SOPS_PROVIDER)
def handle_provider_status_event(
    type: str | None,
    body: kopf.Body,
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """Requeue dependent resources when a provider's status changes or it is deleted.

    Spec changes alone are ignored: they only matter once the provider pass
    has written the resulting status.
    """
    provider = plain(body)
    name = (provider.get("metadata") or {}).get("name", "")
    seen: dict[str, Any] = memo.provider_status

    if type == "DELETED":
        seen.pop(name, None)
        requeue_provider_dependents(provider, memo.store, memo.config)
        return

    status = provider.get("status") or {}
    previous = seen.get(name, {})
    seen[name] = status
    # The initial listing only records status; resume handlers run every resource anyway
    if type is None or previous == status:
        return

    logger.info(f"SopsProvider {name} status changed, requeue dependent secrets")
    requeue_provider_dependents(provider, memo.store, memo.config)


@kopf.on.event("v1", "namespaces")
def handle_namespace_event(
    type: str | None,
    meta: Mapping[str, Any],
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """Retry GlobalSopsSecrets with items that failed to land in a namespace that now exists."""
    if type != "ADDED":
        return

    namespace = meta.get("name")
    handler = SECRET_HANDLERS[KIND_GLOBAL_SOPS_SECRET]
    for resource in memo.store.list_resources(KIND_GLOBAL_SOPS_SECRET):
        status = SopsSecretStatus.from_dict(resource.get("status"))
        if any(entry.namespace == namespace and not is_ready(entry.condition) for entry in status):
            handler.requeue(resource, memo.store, memo.config)
