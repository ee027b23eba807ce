"""Tests for base handler functionality."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import kopf
import pytest
from kubernetes.client.exceptions import ApiException

from factories import sops_secret_resource
from sops_operator.config import OperatorConfig
from sops_operator.constants import KIND_SOPS_SECRET
from sops_operator.decryptor.session import DecryptionSession
from sops_operator.decryptor.sops import GpgRunner, SopsRunner
from sops_operator.errors import (
    NoDecryptionProviderError,
    NotSopsEncryptedError,
    ReconcileCancelledError,
    SecretReconciliationError,
)
from sops_operator.handlers.base import BaseHandler, is_spec_change, plain

META = {"name": "app", "namespace": "team-a", "uid": "uid-1"}


class TestBaseHandler:
    """Test cases for BaseHandler class."""

    def test_init(self):
        """Test handler initialization."""
        handler = BaseHandler(kind="TestKind")
        assert handler.kind == "TestKind"
        assert handler.logger is not None
        assert handler.controller == "sops-operator"

    def test_configure(self):
        """Test the controller name comes from the configuration."""
        handler = BaseHandler(kind="TestKind")
        handler.configure(OperatorConfig(controller_name="sops-b"))
        assert handler.controller == "sops-b"

    def test_get_resource_context(self):
        """Test extracting resource context from metadata."""
        handler = BaseHandler(kind="TestKind")
        assert handler._get_resource_context(META) == {"name": "app", "namespace": "team-a", "uid": "uid-1"}
        assert handler._get_resource_context({}) == {"name": "unknown", "namespace": None, "uid": "unknown"}

    @patch("sops_operator.handlers.base.log_resource_event")
    def test_log_error_sanitizes(self, mock_log):
        """Test error details are sanitized before logging."""
        handler = BaseHandler(kind="TestKind")
        handler.log_error(META, "failed", error=ValueError("token: hvs.secret123"))
        kwargs = mock_log.call_args.kwargs
        assert "hvs.secret123" not in kwargs["error"]
        assert kwargs["error_type"] == "ValueError"
        assert kwargs["resource_kind"] == "TestKind"

    def test_new_session(self):
        """Test sessions use the configured binaries."""
        config = OperatorConfig(sops_binary="/opt/sops", gpg_binary="/opt/gpg", decrypt_timeout=7.0, check_sops_mac=True)
        session = BaseHandler(kind="TestKind").new_session(config)
        assert isinstance(session, DecryptionSession)
        assert isinstance(session.sops, SopsRunner)
        assert isinstance(session.gpg, GpgRunner)
        assert session.sops.binary == "/opt/sops"
        assert session.sops.timeout == 7.0
        assert session.sops.check_mac is True
        assert session.gpg.binary == "/opt/gpg"

    def test_plain(self):
        """Test bodies are deep copied."""
        body = {"spec": {"secrets": [{"name": "a"}]}}
        copied = plain(body)
        copied["spec"]["secrets"].append({"name": "b"})
        assert len(body["spec"]["secrets"]) == 1


class TestPersistStatus:
    """Test cases for conflict safe status writes."""

    def test_writes_changed_status(self, store, config):
        """Test a changed status is written."""
        body = store.add_resource(sops_secret_resource("app", "team-a", []))
        BaseHandler(KIND_SOPS_SECRET).persist_status(store, body, {"size": 0}, config)
        assert store.body(KIND_SOPS_SECRET, "app", "team-a")["status"] == {"size": 0}
        assert store.status_writes == [(KIND_SOPS_SECRET, "app")]

    def test_skips_equal_status(self, store, config):
        """Test an unchanged status is not written."""
        body = store.add_resource({**sops_secret_resource("app", "team-a", []), "status": {"size": 0}})
        BaseHandler(KIND_SOPS_SECRET).persist_status(store, body, {"size": 0}, config)
        assert store.status_writes == []

    def test_resource_gone(self, store, config):
        """Test a deleted resource is not an error."""
        body = sops_secret_resource("app", "team-a", [])
        BaseHandler(KIND_SOPS_SECRET).persist_status(store, body, {"size": 0}, config)
        assert store.status_writes == []

    def test_conflict_rereads(self, store, config):
        """Test a stale resourceVersion is resolved by re-reading."""
        body = store.add_resource(sops_secret_resource("app", "team-a", []))
        store.resources[(KIND_SOPS_SECRET, "team-a", "app")]["metadata"]["resourceVersion"] = "999"
        BaseHandler(KIND_SOPS_SECRET).persist_status(store, body, {"size": 0}, config)
        assert store.body(KIND_SOPS_SECRET, "app", "team-a")["status"] == {"size": 0}

    def test_other_errors_propagate(self, config):
        """Test non conflict errors are raised."""
        store = MagicMock()
        store.get_resource.side_effect = ApiException(status=500)
        with pytest.raises(ApiException):
            BaseHandler(KIND_SOPS_SECRET).persist_status(store, {"metadata": META}, {}, config)


class TestReconcileWithMetrics:
    """Test cases for error translation around a reconciliation."""

    def test_success(self, no_kopf_events):
        """Test a successful pass posts no event unless announced."""
        fn = MagicMock()
        BaseHandler("TestKind").reconcile_with_metrics(META, fn, retry_delay=60)
        fn.assert_called_once()
        no_kopf_events.assert_not_called()

    def test_announced_pass_emits_started(self, no_kopf_events):
        """Test a spec change posts the started event."""
        BaseHandler("TestKind").reconcile_with_metrics(META, MagicMock(), retry_delay=60, announce=True)
        assert no_kopf_events.call_args.kwargs["reason"] == "ReconcileStarted"

    @pytest.mark.parametrize(
        ("reason", "expected"),
        [
            (kopf.Reason.CREATE, True),
            (kopf.Reason.UPDATE, True),
            (kopf.Reason.RESUME, False),
            (None, False),
        ],
    )
    def test_is_spec_change(self, reason, expected):
        """Test only create and update count as spec changes; timers pass no reason."""
        assert is_spec_change(reason) is expected

    @pytest.mark.parametrize(
        "error",
        [
            NoDecryptionProviderError("app", "team-a"),
            NotSopsEncryptedError(),
            SecretReconciliationError("1 secrets failed to reconcile"),
        ],
    )
    def test_policy_and_item_failures_are_permanent(self, error):
        """Test recorded failures are not retried with a delay."""
        with pytest.raises(kopf.PermanentError):
            BaseHandler("TestKind").reconcile_with_metrics(META, MagicMock(side_effect=error), retry_delay=60)

    def test_transient_failures_are_retried(self):
        """Test other failures are requeued after the failure interval."""
        fn = MagicMock(side_effect=ApiException(status=500))
        with pytest.raises(kopf.TemporaryError) as exc_info:
            BaseHandler("TestKind").reconcile_with_metrics(META, fn, retry_delay=42)
        assert exc_info.value.delay == 42

    def test_cancelled(self):
        """Test a cancelled pass is requeued."""
        fn = MagicMock(side_effect=ReconcileCancelledError("stopping"))
        with pytest.raises(kopf.TemporaryError):
            BaseHandler("TestKind").reconcile_with_metrics(META, fn, retry_delay=5)

    def test_failure_event_is_sanitized(self, no_kopf_events):
        """Test failure events never carry key material."""
        fn = MagicMock(side_effect=RuntimeError("bad identity AGE-SECRET-KEY-1ABCDEF"))
        with pytest.raises(kopf.TemporaryError):
            BaseHandler("TestKind").reconcile_with_metrics(META, fn, retry_delay=5)
        message = no_kopf_events.call_args.kwargs["message"]
        assert "ABCDEF" not in message
