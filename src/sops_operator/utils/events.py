"""Utilities for emitting Kubernetes events."""

from __future__ import annotations

from typing import Any

import kopf

from ..constants import (
    EVENT_REASON_DECRYPTION_FAILED,
    EVENT_REASON_NO_PROVIDER,
    EVENT_REASON_OWNERSHIP_CONFLICT,
    EVENT_REASON_RECONCILE_FAILED,
    EVENT_REASON_RECONCILE_STARTED,
    EVENT_REASON_SECRET_REMOVED,
    EVENT_REASON_SECRET_REPLICATED,
)


def emit_event(
    obj: dict[str, Any],
    reason: str,
    message: str,
    type_: str = "Normal",
) -> None:
    """Emit a Kubernetes event.

    Args:
        obj: Resource body (or metadata) the event refers to
        reason: Event reason
        message: Event message
        type_: Event type (Normal or Warning)
    """
    kopf.event(
        obj,
        reason=reason,
        message=message,
        type=type_,
    )


def emit_reconcile_started(obj: dict[str, Any]) -> None:
    """Emit reconcile started event."""
    emit_event(obj, EVENT_REASON_RECONCILE_STARTED, "Reconciliation started")


def emit_reconcile_failed(obj: dict[str, Any], message: str) -> None:
    """Emit reconcile failed event."""
    emit_event(obj, EVENT_REASON_RECONCILE_FAILED, message, type_="Warning")


def emit_secret_replicated(obj: dict[str, Any], namespace: str, name: str) -> None:
    """Emit secret replicated event."""
    emit_event(obj, EVENT_REASON_SECRET_REPLICATED, f"Secret {namespace}/{name} replicated")


def emit_secret_removed(obj: dict[str, Any], namespace: str, name: str) -> None:
    """Emit secret removed event."""
    emit_event(obj, EVENT_REASON_SECRET_REMOVED, f"Secret {namespace}/{name} removed")


def emit_decryption_failed(obj: dict[str, Any], message: str) -> None:
    """Emit decryption failed event."""
    emit_event(obj, EVENT_REASON_DECRYPTION_FAILED, message, type_="Warning")


def emit_ownership_conflict(obj: dict[str, Any], message: str) -> None:
    """Emit ownership conflict event."""
    emit_event(obj, EVENT_REASON_OWNERSHIP_CONFLICT, message, type_="Warning")


def emit_no_provider(obj: dict[str, Any], message: str) -> None:
    """Emit no decryption provider event."""
    emit_event(obj, EVENT_REASON_NO_PROVIDER, message, type_="Warning")
