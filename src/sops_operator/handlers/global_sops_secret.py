"""Handler for GlobalSopsSecret CRD."""

from __future__ import annotations

from typing import Any, Mapping

import kopf

from .. import metrics
from ..api.models import SecretItem
from ..constants import API_GROUP_VERSION, KIND_GLOBAL_SOPS_SECRET
from .base import RESYNC_INTERVAL, is_spec_change, plain
from .secrets import SecretsHandler


class GlobalSopsSecretHandler(SecretsHandler):
    """Handler for GlobalSopsSecret resources; every item names its target namespace."""

    def __init__(self):
        """Initialize GlobalSopsSecret handler."""
        super().__init__(KIND_GLOBAL_SOPS_SECRET)

    def target_namespace(self, resource: Mapping[str, Any], item: SecretItem) -> str | None:
        return item.namespace

    def record_condition(self, meta: Mapping[str, Any], condition: dict[str, Any]) -> None:
        metrics.record_global_secret_condition(meta.get("name", ""), condition)

    def delete(self, meta: Mapping[str, Any]) -> None:
        super().delete(meta)
        metrics.delete_global_secret_condition(meta.get("name", ""))


# Global handler instance
_handler = GlobalSopsSecretHandler()


@kopf.on.create(API_GROUP_VERSION, KIND_GLOBAL_SOPS_SECRET)
@kopf.on.update(API_GROUP_VERSION, KIND_GLOBAL_SOPS_SECRET)
@kopf.on.resume(API_GROUP_VERSION, KIND_GLOBAL_SOPS_SECRET)
@kopf.timer(API_GROUP_VERSION, KIND_GLOBAL_SOPS_SECRET, interval=RESYNC_INTERVAL, initial_delay=RESYNC_INTERVAL)
def handle_global_sops_secret(
    body: kopf.Body,
    meta: dict[str, Any],
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """Handle GlobalSopsSecret resource reconciliation."""
    resource = plain(body)
    _handler.reconcile_with_metrics(
        meta,
        lambda: _handler.reconcile(resource, memo.store, memo.config),
        retry_delay=memo.config.failed_secrets_interval,
        obj=body,
        announce=is_spec_change(kwargs.get("reason")),
    )


@kopf.on.delete(API_GROUP_VERSION, KIND_GLOBAL_SOPS_SECRET, optional=True)
def handle_global_sops_secret_delete(
    meta: dict[str, Any],
    **kwargs: Any,
) -> None:
    """Handle GlobalSopsSecret resource deletion."""
    _handler.delete(meta)
