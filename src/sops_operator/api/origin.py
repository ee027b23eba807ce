"""Identity of resources tracked in status lists."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping


@dataclass(frozen=True)
class Origin:
    """Stable identity of a resource across reconciliation passes.

    Two origins are the same instance when ``key`` is equal. ``uid`` is
    recorded for information only.
    """

    name: str
    namespace: str | None = None
    uid: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.namespace or "", self.name)

    @classmethod
    def from_object(cls, obj: Mapping[str, Any]) -> Origin:
        meta = obj.get("metadata") or {}
        return cls(name=meta.get("name", ""), namespace=meta.get("namespace"), uid=meta.get("uid"))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Origin:
        return cls(name=data.get("name", ""), namespace=data.get("namespace"), uid=data.get("uid"))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name}
        if self.namespace:
            data["namespace"] = self.namespace
        if self.uid:
            data["uid"] = self.uid
        return data

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name
