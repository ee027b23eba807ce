"""Tests for the Kubernetes resource store."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.exceptions import ApiException

from sops_operator.api.registry import default_registry
from sops_operator.constants import KIND_GLOBAL_SOPS_SECRET, KIND_SOPS_PROVIDER, KIND_SOPS_SECRET
from sops_operator.errors import ReconcileCancelledError
from sops_operator.store import ResourceStore, load_kubernetes_config


@pytest.fixture
def apis():
    core = MagicMock()
    custom = MagicMock()
    with patch("sops_operator.store.client.ApiClient") as api_client:
        api_client.return_value.sanitize_for_serialization.side_effect = lambda obj: obj.to_dict()
        yield core, custom


@pytest.fixture
def resource_store(apis):
    core, custom = apis
    return ResourceStore(default_registry(), core_api=core, custom_api=custom)


def model(data):
    obj = MagicMock()
    obj.to_dict.return_value = data
    return obj


class TestCustomResources:
    """Test cases for custom resource access."""

    def test_list_providers(self, resource_store, apis):
        """Test providers are listed cluster wide."""
        _, custom = apis
        custom.list_cluster_custom_object.return_value = {"items": [{"metadata": {"name": "p"}}]}

        assert resource_store.list_providers() == [{"metadata": {"name": "p"}}]
        custom.list_cluster_custom_object.assert_called_once_with(
            group="addons.projectcapsule.dev", version="v1alpha1", plural="sopsproviders",
        )

    def test_get_namespaced(self, resource_store, apis):
        """Test namespaced kinds are read from their namespace."""
        _, custom = apis
        resource_store.get_resource(KIND_SOPS_SECRET, "app", "team-a")
        kwargs = custom.get_namespaced_custom_object.call_args.kwargs
        assert kwargs["namespace"] == "team-a"
        assert kwargs["plural"] == "sopssecrets"

    def test_get_cluster_scoped(self, resource_store, apis):
        """Test cluster scoped kinds ignore the namespace."""
        _, custom = apis
        resource_store.get_resource(KIND_GLOBAL_SOPS_SECRET, "g")
        assert custom.get_cluster_custom_object.call_args.kwargs["plural"] == "globalsopssecrets"

    def test_replace_status(self, resource_store, apis):
        """Test status writes go to the status subresource."""
        _, custom = apis
        body = {"metadata": {"name": "p", "resourceVersion": "3"}, "status": {}}
        resource_store.replace_status(KIND_SOPS_PROVIDER, body)
        kwargs = custom.replace_cluster_custom_object_status.call_args.kwargs
        assert kwargs["body"] is body
        assert kwargs["name"] == "p"

    def test_unknown_kind(self, resource_store):
        """Test unregistered kinds are rejected."""
        with pytest.raises(KeyError):
            resource_store.list_resources("Bucket")


class TestSecrets:
    """Test cases for core secret access."""

    def test_list_key_secrets(self, resource_store, apis):
        """Test key secrets are listed by marker label."""
        core, _ = apis
        core.list_secret_for_all_namespaces.return_value = model({"items": [{"metadata": {"name": "k"}}]})

        assert resource_store.list_key_secrets() == [{"metadata": {"name": "k"}}]
        assert core.list_secret_for_all_namespaces.call_args.kwargs["label_selector"] == (
            "addons.projectcapsule.dev/sops-secret=true"
        )

    def test_read_missing_secret(self, resource_store, apis):
        """Test a missing secret reads as None."""
        core, _ = apis
        core.read_namespaced_secret.side_effect = ApiException(status=404)
        assert resource_store.read_secret("db", "team-a") is None

    def test_read_error(self, resource_store, apis):
        """Test other read errors propagate."""
        core, _ = apis
        core.read_namespaced_secret.side_effect = ApiException(status=403)
        with pytest.raises(ApiException):
            resource_store.read_secret("db", "team-a")

    def test_create_secret(self, resource_store, apis):
        """Test creating a secret in its namespace."""
        core, _ = apis
        core.create_namespaced_secret.return_value = model({"metadata": {"name": "db", "uid": "u"}})
        body = {"metadata": {"name": "db", "namespace": "team-a"}}

        assert resource_store.create_secret(body)["metadata"]["uid"] == "u"
        assert core.create_namespaced_secret.call_args.kwargs == {"namespace": "team-a", "body": body}

    def test_delete_missing_secret(self, resource_store, apis):
        """Test deleting an already deleted secret."""
        core, _ = apis
        core.delete_namespaced_secret.side_effect = ApiException(status=404)
        assert resource_store.delete_secret("db", "team-a") is False

    def test_delete_secret(self, resource_store, apis):
        """Test deleting an existing secret."""
        core, _ = apis
        assert resource_store.delete_secret("db", "team-a") is True
        core.delete_namespaced_secret.assert_called_once_with(name="db", namespace="team-a")


class TestOwnWrites:
    """Test cases for recognizing watch events caused by the store's own writes."""

    def test_unknown_secret(self, resource_store):
        """Test a secret never written is not an own write."""
        secret = {"metadata": {"name": "db", "namespace": "team-a", "resourceVersion": "1"}}
        assert not resource_store.is_own_write(secret)
        assert not resource_store.is_own_write(secret, deleted=True)

    def test_create_and_replace(self, resource_store, apis):
        """Test only the last written resourceVersion counts."""
        core, _ = apis
        core.create_namespaced_secret.return_value = model(
            {"metadata": {"name": "db", "namespace": "team-a", "resourceVersion": "5"}}
        )
        core.replace_namespaced_secret.return_value = model(
            {"metadata": {"name": "db", "namespace": "team-a", "resourceVersion": "6"}}
        )
        body = {"metadata": {"name": "db", "namespace": "team-a"}}

        resource_store.create_secret(body)
        assert resource_store.is_own_write({"metadata": {"name": "db", "namespace": "team-a", "resourceVersion": "5"}})

        resource_store.replace_secret(body)
        assert not resource_store.is_own_write({"metadata": {"name": "db", "namespace": "team-a", "resourceVersion": "5"}})
        assert resource_store.is_own_write({"metadata": {"name": "db", "namespace": "team-a", "resourceVersion": "6"}})
        assert not resource_store.is_own_write(
            {"metadata": {"name": "db", "namespace": "team-a", "resourceVersion": "6"}}, deleted=True
        )

    def test_delete(self, resource_store):
        """Test a deletion by the store is recognized in the delete event."""
        resource_store.delete_secret("db", "team-a")
        secret = {"metadata": {"name": "db", "namespace": "team-a", "resourceVersion": "9"}}
        assert resource_store.is_own_write(secret, deleted=True)
        assert not resource_store.is_own_write(secret)


class TestCallBehaviour:
    """Test cases for cancellation and throttling."""

    def test_stop_event_cancels(self, apis):
        """Test no request is issued once the operator is stopping."""
        core, custom = apis
        stop_event = threading.Event()
        store = ResourceStore(default_registry(), core_api=core, custom_api=custom, stop_event=stop_event)
        stop_event.set()

        with pytest.raises(ReconcileCancelledError):
            store.read_secret("db", "team-a")
        core.read_namespaced_secret.assert_not_called()

    @patch("sops_operator.utils.rate_limit.time.sleep")
    def test_rate_limited_call_is_retried(self, mock_sleep, resource_store, apis):
        """Test throttled requests are retried."""
        core, _ = apis
        core.read_namespaced_secret.side_effect = [ApiException(status=429), model({"metadata": {"name": "db"}})]

        assert resource_store.read_secret("db", "team-a") == {"metadata": {"name": "db"}}
        assert core.read_namespaced_secret.call_count == 2


class TestLoadKubernetesConfig:
    """Test cases for client configuration."""

    @patch("sops_operator.store.config")
    def test_in_cluster(self, mock_config):
        """Test in-cluster configuration is preferred."""
        load_kubernetes_config()
        mock_config.load_incluster_config.assert_called_once()
        mock_config.load_kube_config.assert_not_called()

    @patch("sops_operator.store.config.load_kube_config")
    @patch("sops_operator.store.config.load_incluster_config")
    def test_fallback(self, mock_incluster, mock_kube):
        """Test the local kubeconfig is used outside a cluster."""
        from kubernetes.config import ConfigException

        mock_incluster.side_effect = ConfigException("not in cluster")
        load_kubernetes_config()
        mock_kube.assert_called_once()
