"""Base handler class with common functionality for all CRD handlers."""

from __future__ import annotations

import copy
import logging
import time
from typing import Any, Callable, Mapping

import kopf
from kubernetes.client.exceptions import ApiException

from .. import metrics
from ..config import OperatorConfig
from ..constants import FIELD_MANAGER
from ..decryptor.session import DecryptionSession
from ..decryptor.sops import GpgRunner, SopsRunner
from ..errors import PolicyError, ReconcileCancelledError, SecretReconciliationError
from ..logging import log_resource_event
from ..store import ResourceStore
from ..utils.errors import sanitize_exception
from ..utils.events import emit_reconcile_failed, emit_reconcile_started
from ..utils.retry import Backoff, retry_on_conflict

# Timers are registered at import time, before the startup handler runs
RESYNC_INTERVAL = OperatorConfig.from_env().resync_interval


def plain(body: Mapping[str, Any]) -> dict[str, Any]:
    """Copy a kopf body into a plain, mutable dict."""
    return copy.deepcopy(dict(body))


def is_spec_change(reason: Any) -> bool:
    """Whether a kopf handler was invoked for a create or update of the resource."""
    return reason in (kopf.Reason.CREATE, kopf.Reason.UPDATE)


class BaseHandler:
    """Base class for all CRD handlers with common functionality."""

    def __init__(self, kind: str):
        """Initialize base handler.

        Args:
            kind: The Kubernetes resource kind (e.g., "SopsProvider", "SopsSecret")
        """
        self.kind = kind
        self.logger = logging.getLogger(__name__)
        self.controller = FIELD_MANAGER

    def configure(self, config: OperatorConfig) -> None:
        self.controller = config.controller_name

    def _get_resource_context(self, meta: Mapping[str, Any]) -> dict[str, Any]:
        """Extract common resource context from metadata.

        Args:
            meta: Kubernetes resource metadata

        Returns:
            Dictionary with resource context fields
        """
        return {
            "name": meta.get("name", "unknown"),
            "namespace": meta.get("namespace"),
            "uid": meta.get("uid", "unknown"),
        }

    def _log(
        self,
        level: int,
        meta: Mapping[str, Any],
        message: str,
        event: str,
        reason: str,
        **kwargs: Any,
    ) -> None:
        ctx = self._get_resource_context(meta)
        log_resource_event(
            self.logger,
            controller=self.controller,
            resource_kind=self.kind,
            resource_name=ctx["name"],
            namespace=ctx["namespace"],
            uid=ctx["uid"],
            event=event,
            reason=reason,
            message=message,
            level=level,
            **kwargs,
        )

    def log_info(
        self,
        meta: Mapping[str, Any],
        message: str,
        event: str = "info",
        reason: str = "Info",
        **kwargs: Any,
    ) -> None:
        """Log an info-level structured log message."""
        self._log(logging.INFO, meta, message, event, reason, **kwargs)

    def log_warning(
        self,
        meta: Mapping[str, Any],
        message: str,
        event: str = "warning",
        reason: str = "Warning",
        **kwargs: Any,
    ) -> None:
        """Log a warning-level structured log message."""
        self._log(logging.WARNING, meta, message, event, reason, **kwargs)

    def log_error(
        self,
        meta: Mapping[str, Any],
        message: str,
        error: Exception | None = None,
        event: str = "error",
        reason: str = "Error",
        **kwargs: Any,
    ) -> None:
        """Log an error-level structured log message.

        Args:
            meta: Kubernetes resource metadata
            message: Log message
            error: Optional exception to include sanitized error details
            event: Event type (default: "error")
            reason: Reason for the event (default: "Error")
            **kwargs: Additional fields to include in the log
        """
        log_data = kwargs.copy()

        if error is not None:
            log_data["error"] = sanitize_exception(error)
            log_data["error_type"] = type(error).__name__

        self._log(logging.ERROR, meta, message, event, reason, **log_data)

    def new_session(self, config: OperatorConfig) -> DecryptionSession:
        """Create a decryption session configured from the operator settings."""
        return DecryptionSession(
            sops=SopsRunner(config.sops_binary, config.decrypt_timeout, config.check_sops_mac),
            gpg=GpgRunner(config.gpg_binary, config.decrypt_timeout),
        )

    def persist_status(
        self,
        store: ResourceStore,
        resource: Mapping[str, Any],
        status: dict[str, Any],
        config: OperatorConfig,
    ) -> None:
        """Write the status subresource under optimistic concurrency.

        The latest object is re-read on every attempt and only its status is
        replaced. Nothing is written when the stored status already matches.
        """
        meta = resource.get("metadata") or {}

        def attempt() -> None:
            try:
                latest = store.get_resource(self.kind, meta.get("name"), meta.get("namespace"))
            except ApiException as e:
                if e.status == 404:
                    self.log_info(meta, "Resource is gone, skipping status update", reason="NotFound")
                    return
                raise

            if (latest.get("status") or {}) == status:
                return

            latest["status"] = status
            try:
                store.replace_status(self.kind, latest)
            except ApiException as e:
                if e.status == 409:
                    metrics.status_conflicts_total.labels(kind=self.kind).inc()
                raise

        retry_on_conflict(attempt, Backoff(steps=config.status_retry_steps))

    def reconcile_with_metrics(
        self,
        meta: Mapping[str, Any],
        reconcile_fn: Callable[[], None],
        retry_delay: float,
        obj: Mapping[str, Any] | None = None,
        announce: bool = False,
    ) -> None:
        """Execute reconciliation with metrics and error translation.

        Policy and item failures have already been recorded in status and
        are not retried. Every other failure is retried after ``retry_delay``.

        Args:
            meta: Kubernetes resource metadata
            reconcile_fn: Function to execute for reconciliation
            retry_delay: Requeue delay for transient failures
            obj: Resource body events are attached to (defaults to ``meta``)
            announce: Emit a ReconcileStarted event, set for spec changes only

        Raises:
            kopf.PermanentError: On policy or item failures
            kopf.TemporaryError: On any other failure
        """
        target = obj if obj is not None else meta
        if announce:
            emit_reconcile_started(target)
        metrics.reconcile_total.labels(kind=self.kind, result="started").inc()

        start_time = time.time()
        try:
            reconcile_fn()
            metrics.reconcile_total.labels(kind=self.kind, result="success").inc()
        except (PolicyError, SecretReconciliationError) as e:
            sanitized_error = sanitize_exception(e)
            metrics.error_total.labels(kind=self.kind, error_type=type(e).__name__).inc()
            metrics.reconcile_total.labels(kind=self.kind, result="failed").inc()
            self.log_warning(meta, f"Reconciliation failed: {sanitized_error}", reason="ReconciliationFailed")
            emit_reconcile_failed(target, f"Reconciliation failed: {sanitized_error}")
            raise kopf.PermanentError(sanitized_error) from e
        except ReconcileCancelledError as e:
            metrics.reconcile_total.labels(kind=self.kind, result="cancelled").inc()
            self.log_info(meta, "Reconciliation cancelled", reason="Cancelled")
            raise kopf.TemporaryError(str(e), delay=retry_delay) from e
        except Exception as e:
            sanitized_error = sanitize_exception(e)
            metrics.error_total.labels(kind=self.kind, error_type=type(e).__name__).inc()
            self.log_error(meta, "Reconciliation failed", error=e, reason="ReconciliationFailed")
            emit_reconcile_failed(target, f"Reconciliation failed: {sanitized_error}")
            metrics.reconcile_total.labels(kind=self.kind, result="error").inc()
            raise kopf.TemporaryError(f"Reconciliation failed: {sanitized_error}", delay=retry_delay) from e
        finally:
            duration = time.time() - start_time
            metrics.reconcile_duration_seconds.labels(kind=self.kind).observe(duration)
