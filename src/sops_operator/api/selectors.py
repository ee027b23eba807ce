"""Label and namespace selectors.

A ``NamespacedSelector`` is serialized inline like a Kubernetes label
selector with an extra ``namespaceSelector`` field::

    matchLabels:
      team: a
    matchExpressions:
      - key: tier
        operator: In
        values: [backend]
    namespaceSelector:
      matchLabels:
        env: prod

Both predicates are optional. A selector without either predicate matches
nothing. A present but empty label predicate matches every label set.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping

from ..errors import SelectorError

OP_IN = "In"
OP_NOT_IN = "NotIn"
OP_EXISTS = "Exists"
OP_DOES_NOT_EXIST = "DoesNotExist"

_OPERATORS = (OP_IN, OP_NOT_IN, OP_EXISTS, OP_DOES_NOT_EXIST)

NamespaceLister = Callable[[], Iterable[Mapping[str, Any]]]


@dataclass(frozen=True)
class LabelSelectorRequirement:
    key: str
    operator: str
    values: tuple[str, ...] = ()

    def validate(self) -> None:
        if not self.key:
            raise SelectorError("selector requirement is missing a key")
        if self.operator not in _OPERATORS:
            raise SelectorError(f"{self.operator!r} is not a valid label selector operator")
        if self.operator in (OP_IN, OP_NOT_IN) and not self.values:
            raise SelectorError(f"values must be non-empty for operator {self.operator} on key {self.key!r}")
        if self.operator in (OP_EXISTS, OP_DOES_NOT_EXIST) and self.values:
            raise SelectorError(f"values must be empty for operator {self.operator} on key {self.key!r}")

    def matches(self, labels: Mapping[str, str]) -> bool:
        if self.operator == OP_IN:
            return self.key in labels and labels[self.key] in self.values
        if self.operator == OP_NOT_IN:
            return self.key not in labels or labels[self.key] not in self.values
        if self.operator == OP_EXISTS:
            return self.key in labels
        return self.key not in labels


@dataclass(frozen=True)
class LabelSelector:
    """Predicate over a label set, equivalent to a Kubernetes LabelSelector."""

    match_labels: Mapping[str, str] = field(default_factory=dict)
    match_expressions: tuple[LabelSelectorRequirement, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> LabelSelector:
        """Parse a serialized label selector.

        Raises:
            SelectorError: If the selector is malformed
        """
        data = data or {}
        if not isinstance(data, Mapping):
            raise SelectorError(f"label selector must be an object, got {type(data).__name__}")

        match_labels = data.get("matchLabels") or {}
        if not isinstance(match_labels, Mapping):
            raise SelectorError("matchLabels must be an object")

        requirements = []
        for expr in data.get("matchExpressions") or []:
            if not isinstance(expr, Mapping):
                raise SelectorError("matchExpressions entries must be objects")
            requirements.append(
                LabelSelectorRequirement(
                    key=expr.get("key", ""),
                    operator=expr.get("operator", ""),
                    values=tuple(expr.get("values") or ()),
                )
            )

        selector = cls(
            match_labels={str(k): str(v) for k, v in match_labels.items()},
            match_expressions=tuple(requirements),
        )
        selector.validate()
        return selector

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.match_labels:
            data["matchLabels"] = dict(self.match_labels)
        if self.match_expressions:
            data["matchExpressions"] = [
                {"key": r.key, "operator": r.operator, **({"values": list(r.values)} if r.values else {})}
                for r in self.match_expressions
            ]
        return data

    def validate(self) -> None:
        for requirement in self.match_expressions:
            requirement.validate()

    def compile(self) -> Callable[[Mapping[str, str]], bool]:
        """Validate once and return a predicate over label sets."""
        self.validate()
        match_labels = dict(self.match_labels)
        requirements = self.match_expressions

        def predicate(labels: Mapping[str, str]) -> bool:
            labels = labels or {}
            for key, value in match_labels.items():
                if labels.get(key) != value:
                    return False
            return all(r.matches(labels) for r in requirements)

        return predicate

    def matches(self, labels: Mapping[str, str] | None) -> bool:
        return self.compile()(labels or {})


@dataclass(frozen=True)
class NamespacedSelector:
    """A label predicate plus a namespace predicate, both optional."""

    label_selector: LabelSelector | None = None
    namespace_selector: LabelSelector | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> NamespacedSelector:
        """Parse the inline serialized form.

        Raises:
            SelectorError: If either predicate is malformed
        """
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise SelectorError(f"selector must be an object, got {type(data).__name__}")

        label_selector = None
        if "matchLabels" in data or "matchExpressions" in data:
            label_selector = LabelSelector.from_dict(
                {k: data[k] for k in ("matchLabels", "matchExpressions") if k in data}
            )

        namespace_selector = None
        if "namespaceSelector" in data and data["namespaceSelector"] is not None:
            namespace_selector = LabelSelector.from_dict(data["namespaceSelector"])

        return cls(label_selector=label_selector, namespace_selector=namespace_selector)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.label_selector is not None:
            data.update(self.label_selector.to_dict())
            data.setdefault("matchLabels", {})
        if self.namespace_selector is not None:
            data["namespaceSelector"] = self.namespace_selector.to_dict()
        return data

    @property
    def is_empty(self) -> bool:
        return self.label_selector is None and self.namespace_selector is None


def _metadata(obj: Mapping[str, Any]) -> Mapping[str, Any]:
    return obj.get("metadata") or {}


def resolve_namespaces(selector: LabelSelector, list_namespaces: NamespaceLister) -> set[str]:
    """Resolve a namespace predicate to the current set of namespace names."""
    predicate = selector.compile()
    return {
        _metadata(ns).get("name")
        for ns in list_namespaces()
        if predicate(_metadata(ns).get("labels") or {})
    }


def match_all(
    selector: NamespacedSelector | None,
    candidates: Iterable[Mapping[str, Any]],
    list_namespaces: NamespaceLister,
) -> list[Mapping[str, Any]]:
    """Return the candidates matched by a selector, in input order.

    Args:
        selector: Selector to evaluate (``None`` matches nothing)
        candidates: Objects carrying ``metadata.labels`` and ``metadata.namespace``
        list_namespaces: Returns the current namespace objects; only called
            when the selector has a namespace predicate

    Returns:
        Matching candidates

    Raises:
        SelectorError: If the selector is malformed
    """
    if selector is None or selector.is_empty:
        return []

    allowed_namespaces: set[str] | None = None
    if selector.namespace_selector is not None:
        allowed_namespaces = resolve_namespaces(selector.namespace_selector, list_namespaces)
        if not allowed_namespaces:
            return []

    label_predicate = selector.label_selector.compile() if selector.label_selector is not None else None

    matched = []
    for candidate in candidates:
        meta = _metadata(candidate)
        if allowed_namespaces is not None and meta.get("namespace") not in allowed_namespaces:
            continue
        if label_predicate is not None and not label_predicate(meta.get("labels") or {}):
            continue
        matched.append(candidate)
    return matched


def matches(
    selector: NamespacedSelector | None,
    candidate: Mapping[str, Any],
    list_namespaces: NamespaceLister,
) -> bool:
    """Test a single object against a selector, with the same semantics as ``match_all``."""
    return bool(match_all(selector, [candidate], list_namespaces))
