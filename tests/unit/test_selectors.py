"""Tests for label and namespace selectors."""

import pytest

from sops_operator.api.selectors import (
    LabelSelector,
    LabelSelectorRequirement,
    NamespacedSelector,
    match_all,
    matches,
    resolve_namespaces,
)
from sops_operator.errors import SelectorError

NAMESPACES = [
    {"metadata": {"name": "team-a", "labels": {"env": "prod"}}},
    {"metadata": {"name": "team-b", "labels": {"env": "dev"}}},
    {"metadata": {"name": "team-c", "labels": {"env": "prod", "pci": "true"}}},
]


def list_namespaces():
    return NAMESPACES


def obj(name, namespace=None, labels=None):
    return {"metadata": {"name": name, "namespace": namespace, "labels": labels or {}}}


class TestLabelSelectorRequirement:
    """Test cases for single selector requirements."""

    @pytest.mark.parametrize(
        "operator,values,labels,expected",
        [
            ("In", ("a", "b"), {"k": "a"}, True),
            ("In", ("a", "b"), {"k": "c"}, False),
            ("In", ("a",), {}, False),
            ("NotIn", ("a",), {"k": "b"}, True),
            ("NotIn", ("a",), {}, True),
            ("NotIn", ("a",), {"k": "a"}, False),
            ("Exists", (), {"k": ""}, True),
            ("Exists", (), {}, False),
            ("DoesNotExist", (), {}, True),
            ("DoesNotExist", (), {"k": "x"}, False),
        ],
    )
    def test_matches(self, operator, values, labels, expected):
        """Test every operator against present and absent labels."""
        assert LabelSelectorRequirement("k", operator, values).matches(labels) is expected

    def test_unknown_operator(self):
        """Test an unknown operator is rejected."""
        with pytest.raises(SelectorError, match="not a valid"):
            LabelSelectorRequirement("k", "Gt", ("1",)).validate()

    def test_in_requires_values(self):
        """Test set operators need values."""
        with pytest.raises(SelectorError, match="non-empty"):
            LabelSelectorRequirement("k", "In").validate()

    def test_exists_rejects_values(self):
        """Test existence operators take no values."""
        with pytest.raises(SelectorError, match="must be empty"):
            LabelSelectorRequirement("k", "Exists", ("x",)).validate()


class TestLabelSelector:
    """Test cases for label selector parsing and evaluation."""

    def test_empty_matches_everything(self):
        """Test an empty label selector matches any label set."""
        selector = LabelSelector.from_dict({})
        assert selector.matches({})
        assert selector.matches({"a": "b"})

    def test_labels_and_expressions_are_anded(self):
        """Test matchLabels and matchExpressions must both hold."""
        selector = LabelSelector.from_dict({
            "matchLabels": {"team": "a"},
            "matchExpressions": [{"key": "tier", "operator": "In", "values": ["web", "api"]}],
        })
        assert selector.matches({"team": "a", "tier": "api"})
        assert not selector.matches({"team": "a", "tier": "db"})
        assert not selector.matches({"team": "b", "tier": "api"})

    def test_malformed_expression(self):
        """Test parsing fails for an invalid expression."""
        with pytest.raises(SelectorError):
            LabelSelector.from_dict({"matchExpressions": [{"key": "a", "operator": "Nope"}]})

    def test_malformed_match_labels(self):
        """Test parsing fails when matchLabels is not an object."""
        with pytest.raises(SelectorError, match="matchLabels"):
            LabelSelector.from_dict({"matchLabels": ["a"]})

    def test_to_dict(self):
        """Test serialization keeps values only where present."""
        data = {
            "matchLabels": {"a": "b"},
            "matchExpressions": [
                {"key": "x", "operator": "Exists"},
                {"key": "y", "operator": "NotIn", "values": ["1"]},
            ],
        }
        assert LabelSelector.from_dict(data).to_dict() == data


class TestNamespacedSelector:
    """Test cases for the combined selector."""

    def test_from_dict_empty(self):
        """Test an empty object carries no predicate."""
        assert NamespacedSelector.from_dict({}).is_empty
        assert NamespacedSelector.from_dict(None).is_empty

    def test_from_dict_empty_match_labels(self):
        """Test an explicit empty matchLabels is a present label predicate."""
        selector = NamespacedSelector.from_dict({"matchLabels": {}})
        assert not selector.is_empty
        assert selector.label_selector is not None

    def test_from_dict_namespace_only(self):
        """Test a namespace predicate without labels."""
        selector = NamespacedSelector.from_dict({"namespaceSelector": {"matchLabels": {"env": "prod"}}})
        assert selector.label_selector is None
        assert selector.namespace_selector.match_labels == {"env": "prod"}

    def test_rejects_non_object(self):
        """Test a scalar selector is malformed."""
        with pytest.raises(SelectorError):
            NamespacedSelector.from_dict("team=a")

    def test_to_dict(self):
        """Test the inline serialized form."""
        data = {"matchLabels": {"team": "a"}, "namespaceSelector": {"matchLabels": {"env": "prod"}}}
        assert NamespacedSelector.from_dict(data).to_dict() == data


class TestMatching:
    """Test cases for evaluating selectors against objects."""

    def test_resolve_namespaces(self):
        """Test namespace predicates resolve to names."""
        selector = LabelSelector.from_dict({"matchLabels": {"env": "prod"}})
        assert resolve_namespaces(selector, list_namespaces) == {"team-a", "team-c"}

    def test_none_and_empty_match_nothing(self):
        """Test absent predicates select nothing."""
        candidates = [obj("a", "team-a")]
        assert match_all(None, candidates, list_namespaces) == []
        assert match_all(NamespacedSelector(), candidates, list_namespaces) == []

    def test_empty_label_predicate_matches_all(self):
        """Test a present but empty label predicate selects every candidate."""
        candidates = [obj("a", "team-a"), obj("b", "team-b", {"x": "y"})]
        selector = NamespacedSelector.from_dict({"matchLabels": {}})
        assert match_all(selector, candidates, list_namespaces) == candidates

    def test_label_predicate(self):
        """Test labels filter candidates in input order."""
        candidates = [obj("a", "team-a", {"sops": "yes"}), obj("b", "team-a"), obj("c", "team-b", {"sops": "yes"})]
        selector = NamespacedSelector.from_dict({"matchLabels": {"sops": "yes"}})
        assert [c["metadata"]["name"] for c in match_all(selector, candidates, list_namespaces)] == ["a", "c"]

    def test_namespace_predicate(self):
        """Test candidates outside the selected namespaces are excluded."""
        candidates = [obj("a", "team-a"), obj("b", "team-b"), obj("c", "team-c")]
        selector = NamespacedSelector.from_dict({"namespaceSelector": {"matchLabels": {"env": "prod"}}})
        assert [c["metadata"]["name"] for c in match_all(selector, candidates, list_namespaces)] == ["a", "c"]

    def test_both_predicates(self):
        """Test label and namespace predicates are anded."""
        candidates = [obj("a", "team-a", {"k": "v"}), obj("b", "team-b", {"k": "v"}), obj("c", "team-c")]
        selector = NamespacedSelector.from_dict({
            "matchLabels": {"k": "v"},
            "namespaceSelector": {"matchLabels": {"env": "prod"}},
        })
        assert [c["metadata"]["name"] for c in match_all(selector, candidates, list_namespaces)] == ["a"]

    def test_no_matching_namespace_matches_nothing(self):
        """Test a namespace predicate resolving to no namespace selects nothing."""
        selector = NamespacedSelector.from_dict({
            "matchLabels": {},
            "namespaceSelector": {"matchLabels": {"env": "staging"}},
        })
        assert match_all(selector, [obj("a", "team-a")], list_namespaces) == []

    def test_cluster_scoped_candidate_and_namespace_predicate(self):
        """Test a candidate without namespace never passes a namespace predicate."""
        selector = NamespacedSelector.from_dict({"namespaceSelector": {}})
        assert not matches(selector, obj("global"), list_namespaces)

    def test_namespaces_listed_only_when_needed(self):
        """Test the namespace lister is not called for pure label selectors."""
        calls = []

        def lister():
            calls.append(1)
            return NAMESPACES

        selector = NamespacedSelector.from_dict({"matchLabels": {"a": "b"}})
        match_all(selector, [obj("a", "team-a", {"a": "b"})], lister)
        assert calls == []

    def test_matches_single(self):
        """Test the single object helper agrees with match_all."""
        selector = NamespacedSelector.from_dict({"matchLabels": {"sops": "team"}})
        assert matches(selector, obj("x", "team-b", {"sops": "team"}), list_namespaces)
        assert not matches(selector, obj("x", "team-b"), list_namespaces)
