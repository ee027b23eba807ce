"""Handler for SopsProvider CRD."""

from __future__ import annotations

from typing import Any, Callable, Mapping

import kopf

from .. import metrics
from ..api.models import InstanceStatus, ProviderStatus, SopsProviderSpec
from ..api.origin import Origin
from ..api.selectors import NamespacedSelector, match_all
from ..config import OperatorConfig
from ..constants import API_GROUP_VERSION, KIND_SOPS_PROVIDER, REASON_KEY_LOAD_FAILED
from ..decryptor.session import DecryptionSession
from ..errors import KeyImportError, SelectorError
from ..store import ResourceStore
from ..tracing import trace_span
from ..utils.conditions import (
    is_ready,
    new_not_ready_condition,
    new_ready_condition,
    transition_condition,
)
from ..utils.errors import sanitize_exception
from .base import RESYNC_INTERVAL, BaseHandler, is_spec_change, plain


def cached_namespaces(store: ResourceStore) -> Callable[[], list[dict[str, Any]]]:
    """Namespace lister that queries the store at most once per pass."""
    cache: list[list[dict[str, Any]]] = []

    def list_namespaces() -> list[dict[str, Any]]:
        if not cache:
            cache.append(store.list_namespaces())
        return cache[0]

    return list_namespaces


class ProviderHandler(BaseHandler):
    """Handler for SopsProvider resources."""

    def __init__(self):
        """Initialize provider handler."""
        super().__init__(KIND_SOPS_PROVIDER)

    def _parse_selectors(self, meta: Mapping[str, Any], field: str, raw: list[dict[str, Any]]) -> tuple[list[NamespacedSelector], int]:
        selectors = []
        invalid = 0
        for idx, entry in enumerate(raw):
            try:
                selectors.append(NamespacedSelector.from_dict(entry))
            except SelectorError as e:
                invalid += 1
                self.log_warning(meta, f"Ignoring invalid selector {field}[{idx}]: {e}", reason="InvalidSelector")
        return selectors, invalid

    def discover_key_secrets(
        self,
        meta: Mapping[str, Any],
        spec: SopsProviderSpec,
        store: ResourceStore,
    ) -> tuple[dict[tuple[str, str], dict[str, Any]], int]:
        """Find the key secrets selected by the provider.

        Returns:
            Matched secrets keyed by identity, and the number of invalid selectors
        """
        selectors, invalid = self._parse_selectors(meta, "providers", spec.providers)
        _, invalid_sops = self._parse_selectors(meta, "sops", spec.sops)

        candidates = [
            s for s in store.list_key_secrets()
            if not (s.get("metadata") or {}).get("deletionTimestamp")
        ]
        list_namespaces = cached_namespaces(store)

        matched: dict[tuple[str, str], dict[str, Any]] = {}
        for selector in selectors:
            for secret in match_all(selector, candidates, list_namespaces):
                matched.setdefault(Origin.from_object(secret).key, secret)
        return matched, invalid + invalid_sops

    def validate_key_secret(
        self,
        secret: Mapping[str, Any],
        session: DecryptionSession,
        generation: int | None = None,
    ) -> dict[str, Any]:
        """Load a key secret into a throwaway session and report its condition."""
        try:
            with session:
                session.keys_from_secret(secret)
        except KeyImportError as e:
            metrics.key_import_total.labels(result="failed").inc()
            return new_not_ready_condition(
                sanitize_exception(e), reason=REASON_KEY_LOAD_FAILED, observed_generation=generation
            )
        metrics.key_import_total.labels(result="success").inc()
        return new_ready_condition(observed_generation=generation)

    def reconcile(self, body: Mapping[str, Any], store: ResourceStore, config: OperatorConfig) -> ProviderStatus:
        """Reconcile SopsProvider resource."""
        meta = body.get("metadata") or {}
        name = meta.get("name", "unknown")
        generation = meta.get("generation")

        with trace_span("reconcile_provider", kind=KIND_SOPS_PROVIDER, attributes={"provider.name": name}):
            spec = SopsProviderSpec.from_dict(body.get("spec"))
            previous = ProviderStatus.from_dict(body.get("status"))
            status = ProviderStatus.from_dict(body.get("status"))

            with trace_span("discover_key_secrets", kind=KIND_SOPS_PROVIDER):
                matched, invalid = self.discover_key_secrets(meta, spec, store)

            for key in status.keys() - matched.keys():
                self.log_info(meta, f"Key secret {key[0]}/{key[1]} no longer selected", reason="KeySecretRemoved")
                status.remove(key)

            failed = 0
            for key, secret in matched.items():
                origin = Origin.from_object(secret)
                condition = self.validate_key_secret(secret, self.new_session(config), generation)
                if not is_ready(condition):
                    failed += 1
                    self.log_warning(meta, f"Key secret {origin} failed to load", reason=REASON_KEY_LOAD_FAILED)

                prev = previous.get(key)
                status.update(InstanceStatus(
                    name=origin.name,
                    namespace=origin.namespace,
                    uid=origin.uid,
                    condition=transition_condition(prev.condition if prev else None, condition),
                ))

            if failed or invalid:
                parts = []
                if failed:
                    parts.append(f"{failed} of {len(matched)} key secrets failed to load")
                if invalid:
                    parts.append(f"{invalid} invalid selectors")
                condition = new_not_ready_condition(", ".join(parts), observed_generation=generation)
            else:
                condition = new_ready_condition(observed_generation=generation)
            status.condition = transition_condition(previous.condition, condition)

            self.persist_status(store, body, status.to_dict(), config)
            metrics.record_provider_condition(name, status.condition)
            return status

    def delete(self, meta: Mapping[str, Any]) -> None:
        """Handle SopsProvider resource deletion."""
        self.log_info(meta, "SopsProvider is being deleted", event="deletion", reason="Deletion")
        metrics.delete_provider_condition(meta.get("name", ""))


# Global handler instance
_handler = ProviderHandler()


@kopf.on.create(API_GROUP_VERSION, KIND_SOPS_PROVIDER)
@kopf.on.update(API_GROUP_VERSION, KIND_SOPS_PROVIDER)
@kopf.on.resume(API_GROUP_VERSION, KIND_SOPS_PROVIDER)
@kopf.timer(API_GROUP_VERSION, KIND_SOPS_PROVIDER, interval=RESYNC_INTERVAL, initial_delay=RESYNC_INTERVAL)
def handle_provider(
    body: kopf.Body,
    meta: dict[str, Any],
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """Handle SopsProvider resource reconciliation."""
    resource = plain(body)
    _handler.reconcile_with_metrics(
        meta,
        lambda: _handler.reconcile(resource, memo.store, memo.config),
        retry_delay=memo.config.failed_secrets_interval,
        obj=body,
        announce=is_spec_change(kwargs.get("reason")),
    )


@kopf.on.delete(API_GROUP_VERSION, KIND_SOPS_PROVIDER, optional=True)
def handle_provider_delete(
    meta: dict[str, Any],
    **kwargs: Any,
) -> None:
    """Handle SopsProvider resource deletion."""
    _handler.delete(meta)
