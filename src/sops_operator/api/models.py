"""Typed views over the SopsProvider, SopsSecret and GlobalSopsSecret resources.

Resources arrive from kopf and the kubernetes client as plain dicts. The
classes here parse the parts the reconcilers work with and serialize status
back into the camelCase layout stored on the resource.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from .origin import Origin


@dataclass
class SecretItem:
    """One plaintext Secret declared by a SopsSecret or GlobalSopsSecret."""

    name: str
    namespace: str | None = None
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    type: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    string_data: dict[str, Any] = field(default_factory=dict)
    immutable: bool | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SecretItem:
        return cls(
            name=data.get("name", ""),
            namespace=data.get("namespace"),
            labels=dict(data.get("labels") or {}),
            annotations=dict(data.get("annotations") or {}),
            type=data.get("type"),
            data=dict(data.get("data") or {}),
            string_data=dict(data.get("stringData") or {}),
            immutable=data.get("immutable"),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name}
        if self.namespace is not None:
            result["namespace"] = self.namespace
        if self.labels:
            result["labels"] = dict(self.labels)
        if self.annotations:
            result["annotations"] = dict(self.annotations)
        if self.type is not None:
            result["type"] = self.type
        if self.data:
            result["data"] = dict(self.data)
        if self.string_data:
            result["stringData"] = dict(self.string_data)
        if self.immutable is not None:
            result["immutable"] = self.immutable
        return result


@dataclass
class SecretMetadata:
    """Naming and metadata applied to every materialized Secret."""

    prefix: str = ""
    suffix: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> SecretMetadata:
        data = data or {}
        return cls(
            prefix=data.get("prefix") or "",
            suffix=data.get("suffix") or "",
            labels=dict(data.get("labels") or {}),
            annotations=dict(data.get("annotations") or {}),
        )


@dataclass
class SopsSecretSpec:
    secrets: list[SecretItem] = field(default_factory=list)
    metadata: SecretMetadata = field(default_factory=SecretMetadata)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> SopsSecretSpec:
        data = data or {}
        return cls(
            secrets=[SecretItem.from_dict(item) for item in data.get("secrets") or []],
            metadata=SecretMetadata.from_dict(data.get("metadata")),
        )


@dataclass
class SopsProviderSpec:
    sops: list[dict[str, Any]] = field(default_factory=list)
    providers: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> SopsProviderSpec:
        data = data or {}
        return cls(
            sops=list(data.get("sops") or []),
            providers=list(data.get("providers") or []),
        )


@dataclass
class InstanceStatus:
    """Status entry of one tracked instance (a key secret or a materialized Secret)."""

    name: str
    namespace: str | None = None
    uid: str | None = None
    condition: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str]:
        return (self.namespace or "", self.name)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> InstanceStatus:
        return cls(
            name=data.get("name", ""),
            namespace=data.get("namespace"),
            uid=data.get("uid"),
            condition=dict(data.get("condition") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name}
        if self.namespace:
            result["namespace"] = self.namespace
        if self.uid:
            result["uid"] = self.uid
        result["condition"] = dict(self.condition)
        return result


class _InstanceList:
    """Identity keyed list of instance statuses with a cached size."""

    def __init__(self, items: list[InstanceStatus] | None = None):
        self._items: dict[tuple[str, str], InstanceStatus] = {}
        for item in items or []:
            self._items[item.key] = item

    def get(self, key: tuple[str, str]) -> InstanceStatus | None:
        return self._items.get(key)

    def update(self, item: InstanceStatus) -> None:
        """Replace the entry with the same identity, or append it."""
        self._items[item.key] = item

    def remove(self, key: tuple[str, str]) -> None:
        self._items.pop(key, None)

    def keys(self) -> set[tuple[str, str]]:
        return set(self._items)

    def __iter__(self):
        return iter(list(self._items.values()))

    def __len__(self) -> int:
        return len(self._items)


class ProviderStatus(_InstanceList):
    """Status of a SopsProvider: one entry per key secret."""

    def __init__(self, providers: list[InstanceStatus] | None = None, condition: dict[str, Any] | None = None):
        super().__init__(providers)
        self.condition = dict(condition or {})

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> ProviderStatus:
        data = data or {}
        return cls(
            providers=[InstanceStatus.from_dict(p) for p in data.get("providers") or []],
            condition=data.get("condition"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "size": len(self),
            "providers": [item.to_dict() for item in self],
            "condition": dict(self.condition),
        }


class SopsSecretStatus(_InstanceList):
    """Status of a SopsSecret or GlobalSopsSecret: one entry per materialized Secret."""

    def __init__(
        self,
        secrets: list[InstanceStatus] | None = None,
        providers: list[Origin] | None = None,
        condition: dict[str, Any] | None = None,
    ):
        super().__init__(secrets)
        self.providers = list(providers or [])
        self.condition = dict(condition or {})

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> SopsSecretStatus:
        data = data or {}
        return cls(
            secrets=[InstanceStatus.from_dict(s) for s in data.get("secrets") or []],
            providers=[Origin.from_dict(p) for p in data.get("providers") or []],
            condition=data.get("condition"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "size": len(self),
            "secrets": [item.to_dict() for item in self],
            "providers": [p.to_dict() for p in self.providers],
            "condition": dict(self.condition),
        }
