"""Registry describing the custom resource kinds served by the operator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from ..constants import (
    API_GROUP,
    API_VERSION,
    KIND_GLOBAL_SOPS_SECRET,
    KIND_SOPS_PROVIDER,
    KIND_SOPS_SECRET,
    PLURAL_GLOBAL_SOPS_SECRET,
    PLURAL_SOPS_PROVIDER,
    PLURAL_SOPS_SECRET,
)


@dataclass(frozen=True)
class ResourceKind:
    kind: str
    group: str
    version: str
    plural: str
    namespaced: bool

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"


class ResourceRegistry:
    """Lookup table of resource kinds, built once at startup and passed around."""

    def __init__(self, kinds: list[ResourceKind] | None = None):
        self._kinds: dict[str, ResourceKind] = {}
        for kind in kinds or []:
            self.register(kind)

    def register(self, kind: ResourceKind) -> None:
        if kind.kind in self._kinds:
            raise ValueError(f"kind {kind.kind} already registered")
        self._kinds[kind.kind] = kind

    def get(self, kind: str) -> ResourceKind:
        try:
            return self._kinds[kind]
        except KeyError:
            raise KeyError(f"kind {kind} is not registered") from None

    def __contains__(self, kind: object) -> bool:
        return kind in self._kinds

    def __iter__(self) -> Iterator[ResourceKind]:
        return iter(self._kinds.values())


def default_registry() -> ResourceRegistry:
    """Build the registry of the kinds this operator reconciles."""
    return ResourceRegistry([
        ResourceKind(KIND_SOPS_PROVIDER, API_GROUP, API_VERSION, PLURAL_SOPS_PROVIDER, namespaced=False),
        ResourceKind(KIND_SOPS_SECRET, API_GROUP, API_VERSION, PLURAL_SOPS_SECRET, namespaced=True),
        ResourceKind(KIND_GLOBAL_SOPS_SECRET, API_GROUP, API_VERSION, PLURAL_GLOBAL_SOPS_SECRET, namespaced=False),
    ])
