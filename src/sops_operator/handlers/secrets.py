"""Reconciliation shared by SopsSecret and GlobalSopsSecret.

One pass discovers the providers allowed to decrypt the resource, loads
their key secrets into a decryption session, decrypts and replicates every
declared item, removes Secrets for items that are no longer declared and
persists the resulting status. The two kinds differ only in where the
materialized Secrets are placed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Mapping

import kopf
from kubernetes.client.exceptions import ApiException

from .. import metrics
from ..api.models import (
    InstanceStatus,
    ProviderStatus,
    SecretItem,
    SecretMetadata,
    SopsSecretSpec,
    SopsSecretStatus,
)
from ..api.origin import Origin
from ..api.selectors import NamespacedSelector, matches
from ..config import OperatorConfig
from ..constants import (
    REASON_DECRYPTION_FAILED,
    REASON_FAILED,
    REASON_NOT_SOPS_ENCRYPTED,
    REASON_OWNERSHIP_CONFLICT,
    REASON_REPLICATION_FAILED,
)
from ..decryptor.session import DecryptionSession
from ..errors import (
    DecryptionError,
    KeyImportError,
    MissingKubernetesSecretError,
    NoDecryptionProviderError,
    NotSopsEncryptedError,
    OwnershipConflictError,
    PolicyError,
    ReconcileCancelledError,
    SecretReconciliationError,
    SelectorError,
)
from ..store import ResourceStore
from ..tracing import trace_span
from ..utils.conditions import (
    is_ready,
    new_not_ready_condition,
    new_ready_condition,
    transition_condition,
)
from ..utils.errors import sanitize_exception
from ..utils.events import (
    emit_decryption_failed,
    emit_no_provider,
    emit_ownership_conflict,
    emit_secret_removed,
    emit_secret_replicated,
)
from ..utils.secrets import build_secret, is_controlled_by, secret_differs, target_name
from .base import BaseHandler
from .provider import cached_namespaces

SECRETS_READY_MESSAGE = "Secrets decrypted"
SECRETS_FAILED_MESSAGE = "Secret reconciliation failed"


class SecretsHandler(BaseHandler, ABC):
    """Common reconciliation of resources that materialize SOPS encrypted secrets."""

    @abstractmethod
    def target_namespace(self, resource: Mapping[str, Any], item: SecretItem) -> str | None:
        """Namespace the Secret for ``item`` is written to."""

    @abstractmethod
    def record_condition(self, meta: Mapping[str, Any], condition: dict[str, Any]) -> None:
        """Publish the resource condition as a metric."""

    def selected_by(
        self,
        provider: Mapping[str, Any],
        resource: Mapping[str, Any],
        list_namespaces: Callable[[], list[dict[str, Any]]],
    ) -> bool:
        """Whether one of the provider's ``sops`` selectors matches the resource."""
        meta = resource.get("metadata") or {}
        provider_name = (provider.get("metadata") or {}).get("name")
        for idx, raw in enumerate((provider.get("spec") or {}).get("sops") or []):
            try:
                selector = NamespacedSelector.from_dict(raw)
            except SelectorError as e:
                self.log_warning(
                    meta,
                    f"Ignoring invalid selector sops[{idx}] of provider {provider_name}: {e}",
                    reason="InvalidSelector",
                )
                continue
            if matches(selector, resource, list_namespaces):
                return True
        return False

    def discover_providers(self, resource: Mapping[str, Any], store: ResourceStore) -> list[dict[str, Any]]:
        """List the providers whose ``sops`` selectors match the resource."""
        list_namespaces = cached_namespaces(store)
        return [p for p in store.list_providers() if self.selected_by(p, resource, list_namespaces)]

    def load_keys(
        self,
        meta: Mapping[str, Any],
        providers: list[dict[str, Any]],
        session: DecryptionSession,
        store: ResourceStore,
    ) -> int:
        """Feed the Ready key secrets of every provider into the session.

        Failures are logged and skipped so working keys still contribute.

        Returns:
            Number of key secrets loaded
        """
        loaded = 0
        seen: set[tuple[str, str]] = set()
        for provider in providers:
            for key_item in ProviderStatus.from_dict(provider.get("status")):
                if key_item.key in seen or not is_ready(key_item.condition):
                    continue
                seen.add(key_item.key)
                try:
                    secret = store.read_secret(key_item.name, key_item.namespace or "")
                    if secret is None:
                        raise MissingKubernetesSecretError(key_item.name, key_item.namespace or "")
                    session.keys_from_secret(secret)
                    loaded += 1
                except (KeyImportError, MissingKubernetesSecretError) as e:
                    metrics.key_import_total.labels(result="failed").inc()
                    self.log_warning(meta, f"Skipping key secret: {sanitize_exception(e)}", reason="KeyLoadFailed")
        return loaded

    def delete_owned_secret(self, resource: Mapping[str, Any], entry: InstanceStatus, store: ResourceStore) -> None:
        """Delete a materialized Secret if it still exists and is owned by the resource.

        Raises:
            ApiException: If the store refuses the read or delete
        """
        meta = resource.get("metadata") or {}
        namespace = entry.namespace or ""
        secret = store.read_secret(entry.name, namespace)
        if secret is None:
            return
        if not is_controlled_by(secret, meta.get("uid")):
            self.log_info(meta, f"Secret {namespace}/{entry.name} is not owned, leaving it in place", reason="NotOwned")
            return
        if store.delete_secret(entry.name, namespace):
            emit_secret_removed(resource, namespace, entry.name)
            self.log_info(meta, f"Removed secret {namespace}/{entry.name}", reason="SecretRemoved")

    def garbage_collect(
        self,
        resource: Mapping[str, Any],
        status: SopsSecretStatus,
        keep: set[tuple[str, str]],
        store: ResourceStore,
    ) -> int:
        """Remove Secrets and status entries that were not selected this pass.

        Returns:
            Number of entries whose removal failed and were kept for the next pass
        """
        meta = resource.get("metadata") or {}
        failed = 0
        for key in status.keys() - keep:
            entry = status.get(key)
            try:
                self.delete_owned_secret(resource, entry, store)
            except ApiException as e:
                failed += 1
                self.log_error(meta, f"Failed to remove secret {key[0]}/{key[1]}", error=e, reason="CleanupFailed")
                continue
            status.remove(key)
        return failed

    def reconcile_item(
        self,
        resource: Mapping[str, Any],
        item: SecretItem,
        metadata: SecretMetadata,
        session: DecryptionSession,
        store: ResourceStore,
        previous: InstanceStatus | None,
    ) -> InstanceStatus:
        """Decrypt one item and create or update its Secret."""
        meta = resource.get("metadata") or {}
        name = target_name(item, metadata)
        namespace = self.target_namespace(resource, item) or ""
        entry = InstanceStatus(name=name, namespace=namespace, uid=previous.uid if previous else None)
        prev_condition = previous.condition if previous else None
        generation = meta.get("generation")

        def fail(reason: str, message: str) -> InstanceStatus:
            entry.condition = transition_condition(
                prev_condition, new_not_ready_condition(message, reason=reason, observed_generation=generation)
            )
            return entry

        if not namespace:
            return fail(REASON_REPLICATION_FAILED, f"secret item {item.name} has no target namespace")

        try:
            existing = store.read_secret(name, namespace)
        except ApiException as e:
            return fail(REASON_REPLICATION_FAILED, sanitize_exception(e))

        if existing is not None and not is_controlled_by(existing, meta.get("uid")):
            error = OwnershipConflictError(name, namespace)
            self.log_warning(meta, str(error), reason=REASON_OWNERSHIP_CONFLICT)
            emit_ownership_conflict(resource, str(error))
            return fail(REASON_OWNERSHIP_CONFLICT, str(error))

        try:
            with trace_span("decrypt_item", kind=self.kind, attributes={"secret.name": name}):
                decrypted = session.decrypt(resource.get("sops") or {}, item)
            metrics.decryption_total.labels(kind=self.kind, result="success").inc()
        except DecryptionError as e:
            metrics.decryption_total.labels(kind=self.kind, result="failed").inc()
            message = sanitize_exception(e)
            self.log_warning(meta, message, reason=REASON_DECRYPTION_FAILED, secret=f"{namespace}/{name}")
            emit_decryption_failed(resource, message)
            return fail(REASON_DECRYPTION_FAILED, message)

        try:
            desired = build_secret(decrypted, name, namespace, metadata, resource, existing)
            if existing is None:
                written = store.create_secret(desired)
                emit_secret_replicated(resource, namespace, name)
            elif secret_differs(existing, desired):
                written = store.replace_secret(desired)
                emit_secret_replicated(resource, namespace, name)
            else:
                written = existing
        except (ValueError, ApiException) as e:
            message = sanitize_exception(e)
            self.log_warning(meta, f"Failed to replicate secret {namespace}/{name}: {message}", reason=REASON_REPLICATION_FAILED)
            return fail(REASON_REPLICATION_FAILED, message)

        entry.uid = (written.get("metadata") or {}).get("uid") or entry.uid
        entry.condition = transition_condition(prev_condition, new_ready_condition(observed_generation=generation))
        return entry

    def _reconcile_items(
        self,
        resource: Mapping[str, Any],
        status: SopsSecretStatus,
        previous: SopsSecretStatus,
        store: ResourceStore,
        config: OperatorConfig,
    ) -> None:
        meta = resource.get("metadata") or {}
        generation = meta.get("generation")

        providers = self.discover_providers(resource, store)
        status.providers = [Origin.from_object(p) for p in providers] if config.enable_status else []
        if not providers:
            raise NoDecryptionProviderError(meta.get("name", ""), meta.get("namespace"))

        with self.new_session(config) as session:
            self.load_keys(meta, providers, session, store)

            if not session.is_encrypted(resource):
                raise NotSopsEncryptedError()

            spec = SopsSecretSpec.from_dict(resource.get("spec"))
            selected: set[tuple[str, str]] = set()
            failed = 0
            for item in spec.secrets:
                key = (self.target_namespace(resource, item) or "", target_name(item, spec.metadata))
                entry = self.reconcile_item(resource, item, spec.metadata, session, store, previous.get(key))
                status.update(entry)
                selected.add(entry.key)
                if not is_ready(entry.condition):
                    failed += 1

        failed += self.garbage_collect(resource, status, selected, store)

        if failed:
            status.condition = transition_condition(
                previous.condition,
                new_not_ready_condition(SECRETS_FAILED_MESSAGE, observed_generation=generation),
            )
            raise SecretReconciliationError(f"{failed} secrets failed to reconcile")

        status.condition = transition_condition(
            previous.condition, new_ready_condition(SECRETS_READY_MESSAGE, observed_generation=generation)
        )

    def cleanup(self, resource: Mapping[str, Any], status: SopsSecretStatus, store: ResourceStore) -> None:
        """Remove every Secret previously materialized for the resource."""
        self.garbage_collect(resource, status, set(), store)

    def reconcile(
        self,
        body: Mapping[str, Any],
        store: ResourceStore,
        config: OperatorConfig,
    ) -> SopsSecretStatus:
        """Run one reconciliation pass and persist its status.

        Raises:
            PolicyError: If no provider may decrypt the resource or it is not encrypted
            SecretReconciliationError: If one or more items failed
        """
        meta = body.get("metadata") or {}
        name = meta.get("name", "unknown")
        generation = meta.get("generation")

        with trace_span(f"reconcile_{self.kind.lower()}", kind=self.kind, attributes={"secret.name": name}):
            previous = SopsSecretStatus.from_dict(body.get("status"))
            status = SopsSecretStatus.from_dict(body.get("status"))

            error: Exception | None = None
            try:
                self._reconcile_items(body, status, previous, store, config)
            except ReconcileCancelledError:
                raise
            except PolicyError as e:
                error = e
                if isinstance(e, NoDecryptionProviderError):
                    reason = REASON_DECRYPTION_FAILED
                    status.providers = []
                    emit_no_provider(body, str(e))
                else:
                    reason = REASON_NOT_SOPS_ENCRYPTED
                status.condition = transition_condition(
                    previous.condition,
                    new_not_ready_condition(str(e), reason=reason, observed_generation=generation),
                )
                self.cleanup(body, status, store)
            except SecretReconciliationError as e:
                error = e
            except Exception as e:
                error = e
                status.condition = transition_condition(
                    previous.condition,
                    new_not_ready_condition(sanitize_exception(e), reason=REASON_FAILED, observed_generation=generation),
                )

            self.persist_status(store, body, status.to_dict(), config)
            self.record_condition(meta, status.condition)

            if error is not None:
                raise error
            return status

    def requeue(self, resource: Mapping[str, Any], store: ResourceStore, config: OperatorConfig) -> bool:
        """Run a pass because something the resource depends on changed.

        Failures are logged, emitted as events and recorded in status by the
        pass itself; the resync timer retries them.

        Returns:
            True if the pass succeeded
        """
        meta = resource.get("metadata") or {}
        if meta.get("deletionTimestamp"):
            return False

        self.log_info(meta, f"Requeued {self.kind} after a dependency changed", reason="Requeued")
        try:
            self.reconcile_with_metrics(
                meta,
                lambda: self.reconcile(resource, store, config),
                retry_delay=config.failed_secrets_interval,
                obj=resource,
            )
        except (kopf.PermanentError, kopf.TemporaryError):
            return False
        return True

    def delete(self, meta: Mapping[str, Any]) -> None:
        """Handle resource deletion; owned Secrets are collected through their owner references."""
        self.log_info(meta, f"{self.kind} is being deleted", event="deletion", reason="Deletion")
