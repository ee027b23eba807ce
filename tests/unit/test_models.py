"""Tests for resource models, origins and the kind registry."""

import pytest

from sops_operator.api.models import (
    InstanceStatus,
    ProviderStatus,
    SecretItem,
    SopsProviderSpec,
    SopsSecretSpec,
    SopsSecretStatus,
)
from sops_operator.api.origin import Origin
from sops_operator.api.registry import ResourceKind, ResourceRegistry, default_registry
from sops_operator.constants import KIND_GLOBAL_SOPS_SECRET, KIND_SOPS_PROVIDER, KIND_SOPS_SECRET


class TestSecretItem:
    """Test cases for SecretItem."""

    def test_from_dict_camel_case(self):
        """Test stringData is read into string_data."""
        item = SecretItem.from_dict({"name": "db", "stringData": {"a": "b"}, "immutable": True})
        assert item.string_data == {"a": "b"}
        assert item.immutable is True
        assert item.data == {}

    def test_to_dict_omits_empty_fields(self):
        """Test serialization only carries set fields."""
        assert SecretItem(name="db", data={"k": "dg=="}).to_dict() == {"name": "db", "data": {"k": "dg=="}}


class TestSpecs:
    """Test cases for spec parsing."""

    def test_sops_secret_spec_defaults(self):
        """Test an empty spec yields no items and empty metadata."""
        spec = SopsSecretSpec.from_dict(None)
        assert spec.secrets == []
        assert spec.metadata.prefix == ""
        assert spec.metadata.suffix == ""

    def test_sops_secret_spec_metadata(self):
        """Test resource level metadata is parsed."""
        spec = SopsSecretSpec.from_dict({
            "secrets": [{"name": "a"}, {"name": "b"}],
            "metadata": {"prefix": "p-", "labels": {"x": "y"}},
        })
        assert [s.name for s in spec.secrets] == ["a", "b"]
        assert spec.metadata.prefix == "p-"
        assert spec.metadata.labels == {"x": "y"}

    def test_provider_spec(self):
        """Test selector lists are kept raw and default to empty."""
        spec = SopsProviderSpec.from_dict({"sops": [{"matchLabels": {"a": "b"}}]})
        assert spec.sops == [{"matchLabels": {"a": "b"}}]
        assert spec.providers == []
        assert SopsProviderSpec.from_dict(None).sops == []


class TestStatus:
    """Test cases for status lists."""

    def test_update_replaces_by_identity(self):
        """Test entries are keyed by namespace and name, not uid."""
        status = SopsSecretStatus()
        status.update(InstanceStatus(name="db", namespace="ns", uid="1"))
        status.update(InstanceStatus(name="db", namespace="ns", uid="2"))
        status.update(InstanceStatus(name="db", namespace="other"))
        assert len(status) == 2
        assert status.get(("ns", "db")).uid == "2"

    def test_remove_missing_is_noop(self):
        """Test removing an unknown key does nothing."""
        status = ProviderStatus()
        status.remove(("ns", "missing"))
        assert len(status) == 0

    def test_sops_secret_status_to_dict(self):
        """Test the serialized status carries size, entries and providers."""
        condition = {"type": "Ready", "status": "True"}
        status = SopsSecretStatus(
            secrets=[InstanceStatus(name="db", namespace="ns", uid="u1", condition=condition)],
            providers=[Origin(name="prov", uid="p1")],
            condition=condition,
        )
        assert status.to_dict() == {
            "size": 1,
            "secrets": [{"name": "db", "namespace": "ns", "uid": "u1", "condition": condition}],
            "providers": [{"name": "prov", "uid": "p1"}],
            "condition": condition,
        }

    def test_sops_secret_status_from_dict(self):
        """Test parsing a stored status."""
        status = SopsSecretStatus.from_dict({
            "size": 1,
            "secrets": [{"name": "db", "namespace": "ns"}],
            "providers": [{"name": "prov"}],
            "condition": {"type": "Ready"},
        })
        assert status.keys() == {("ns", "db")}
        assert status.providers == [Origin(name="prov")]
        assert status.condition == {"type": "Ready"}

    def test_provider_status_to_dict(self):
        """Test the provider status layout."""
        status = ProviderStatus.from_dict({"providers": [{"name": "k", "namespace": "default"}]})
        data = status.to_dict()
        assert data["size"] == 1
        assert data["providers"] == [{"name": "k", "namespace": "default", "condition": {}}]

    def test_from_empty(self):
        """Test a missing status parses to an empty one."""
        status = SopsSecretStatus.from_dict(None)
        assert len(status) == 0
        assert status.providers == []
        assert status.condition == {}


class TestOrigin:
    """Test cases for Origin identity."""

    def test_key_ignores_uid(self):
        """Test identity is namespace and name only."""
        assert Origin("a", "ns", "1").key == Origin("a", "ns", "2").key

    def test_cluster_scoped_key(self):
        """Test a cluster scoped origin uses an empty namespace."""
        assert Origin("a").key == ("", "a")

    def test_from_object(self):
        """Test building an origin from a resource body."""
        origin = Origin.from_object({"metadata": {"name": "a", "namespace": "ns", "uid": "u"}})
        assert origin == Origin("a", "ns", "u")
        assert str(origin) == "ns/a"
        assert str(Origin("a")) == "a"


class TestRegistry:
    """Test cases for the resource registry."""

    def test_default_registry(self):
        """Test the three kinds are registered with their scope."""
        registry = default_registry()
        assert KIND_SOPS_PROVIDER in registry
        assert registry.get(KIND_SOPS_SECRET).namespaced is True
        assert registry.get(KIND_GLOBAL_SOPS_SECRET).namespaced is False
        assert registry.get(KIND_SOPS_PROVIDER).api_version == "addons.projectcapsule.dev/v1alpha1"
        assert len(list(registry)) == 3

    def test_unknown_kind(self):
        """Test looking up an unregistered kind."""
        with pytest.raises(KeyError):
            ResourceRegistry().get("Nope")

    def test_duplicate_registration(self):
        """Test a kind can only be registered once."""
        kind = ResourceKind("A", "g", "v1", "as", namespaced=True)
        registry = ResourceRegistry([kind])
        with pytest.raises(ValueError):
            registry.register(kind)
