"""Prometheus metrics for the SOPS Operator."""

from __future__ import annotations

from typing import Any

from prometheus_client import Counter, Gauge, Histogram

from .constants import COND_NOT_READY, COND_READY

# Reconciliation metrics
reconcile_total = Counter(
    "sops_operator_reconcile_total",
    "Total number of reconciliations",
    ["kind", "result"],
)

reconcile_duration_seconds = Histogram(
    "sops_operator_reconcile_duration_seconds",
    "Duration of reconciliations in seconds",
    ["kind"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0],
)

error_total = Counter(
    "sops_operator_error_total",
    "Total number of reconciliation errors",
    ["kind", "error_type"],
)

# Decryption metrics
decryption_total = Counter(
    "sops_operator_decryption_total",
    "Total number of secret item decryptions",
    ["kind", "result"],
)

key_import_total = Counter(
    "sops_operator_key_import_total",
    "Total number of key secret imports",
    ["result"],
)

secret_operations_total = Counter(
    "sops_operator_secret_operations_total",
    "Total number of plaintext secret operations",
    ["operation", "result"],
)

# API call metrics
api_call_total = Counter(
    "sops_operator_api_call_total",
    "Total number of API calls",
    ["api_type", "operation", "result"],
)

api_call_duration_seconds = Histogram(
    "sops_operator_api_call_duration_seconds",
    "Duration of API calls in seconds",
    ["api_type", "operation"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0],
)

rate_limit_hits_total = Counter(
    "sops_operator_rate_limit_hits_total",
    "Total number of rate limit hits",
    ["api_type"],
)

status_conflicts_total = Counter(
    "sops_operator_status_conflicts_total",
    "Total number of status update conflicts",
    ["kind"],
)

# Condition gauges
provider_condition = Gauge(
    "sops_provider_condition",
    "The current condition status of a Provider.",
    ["name", "status"],
)

secret_condition = Gauge(
    "sops_secret_condition",
    "The current condition status of a Secret.",
    ["name", "namespace", "status"],
)

global_secret_condition = Gauge(
    "sops_global_secret_condition",
    "The current condition status of a Global Secret.",
    ["name", "status"],
)

_CONDITION_TYPES = (COND_READY, COND_NOT_READY)


def _condition_values(condition: dict[str, Any] | None) -> dict[str, float]:
    ready = bool(condition) and condition.get("status") == "True"
    return {COND_READY: 1.0 if ready else 0.0, COND_NOT_READY: 0.0 if ready else 1.0}


def record_provider_condition(name: str, condition: dict[str, Any] | None) -> None:
    """Record the condition of a SopsProvider."""
    for status, value in _condition_values(condition).items():
        provider_condition.labels(name=name, status=status).set(value)


def delete_provider_condition(name: str) -> None:
    """Drop the condition series of a SopsProvider."""
    for status in _CONDITION_TYPES:
        try:
            provider_condition.remove(name, status)
        except KeyError:
            pass


def record_secret_condition(name: str, namespace: str, condition: dict[str, Any] | None) -> None:
    """Record the condition of a SopsSecret."""
    for status, value in _condition_values(condition).items():
        secret_condition.labels(name=name, namespace=namespace, status=status).set(value)


def delete_secret_condition(name: str, namespace: str) -> None:
    """Drop the condition series of a SopsSecret."""
    for status in _CONDITION_TYPES:
        try:
            secret_condition.remove(name, namespace, status)
        except KeyError:
            pass


def record_global_secret_condition(name: str, condition: dict[str, Any] | None) -> None:
    """Record the condition of a GlobalSopsSecret."""
    for status, value in _condition_values(condition).items():
        global_secret_condition.labels(name=name, status=status).set(value)


def delete_global_secret_condition(name: str) -> None:
    """Drop the condition series of a GlobalSopsSecret."""
    for status in _CONDITION_TYPES:
        try:
            global_secret_condition.remove(name, status)
        except KeyError:
            pass
