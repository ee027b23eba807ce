"""Utilities for building and comparing materialized Kubernetes secrets."""

from __future__ import annotations

import base64
import binascii
from typing import Any, Mapping

from ..api.models import SecretItem, SecretMetadata


def encode_value(value: str | bytes) -> str:
    """Base64 encode a secret value."""
    if isinstance(value, str):
        value = value.encode("utf-8")
    return base64.b64encode(value).decode("ascii")


def decode_value(value: str) -> bytes:
    """Strictly base64 decode a secret value.

    Raises:
        ValueError: If the value is not valid base64
    """
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, TypeError) as e:
        raise ValueError(f"invalid base64 value: {e}") from e


def target_name(item: SecretItem, metadata: SecretMetadata) -> str:
    return f"{metadata.prefix}{item.name}{metadata.suffix}"


def owner_reference(owner: Mapping[str, Any]) -> dict[str, Any]:
    """Build a controlling owner reference to a resource body."""
    meta = owner.get("metadata") or {}
    return {
        "apiVersion": owner.get("apiVersion"),
        "kind": owner.get("kind"),
        "name": meta.get("name"),
        "uid": meta.get("uid"),
        "controller": True,
        "blockOwnerDeletion": True,
    }


def controller_of(secret: Mapping[str, Any]) -> dict[str, Any] | None:
    for ref in (secret.get("metadata") or {}).get("ownerReferences") or []:
        if ref.get("controller"):
            return ref
    return None


def is_controlled_by(secret: Mapping[str, Any], owner_uid: str | None) -> bool:
    """Check whether a Secret's controlling owner reference points at ``owner_uid``."""
    ref = controller_of(secret)
    return ref is not None and owner_uid is not None and ref.get("uid") == owner_uid


def build_secret(
    item: SecretItem,
    name: str,
    namespace: str,
    metadata: SecretMetadata,
    owner: Mapping[str, Any],
    existing: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Build the desired state of a materialized Secret from a decrypted item.

    Labels and annotations are merged in the order existing, resource
    metadata, item. ``stringData`` is folded into ``data`` so the result is
    directly comparable to what the API server returns.

    Args:
        item: Decrypted secret item
        name: Target secret name
        namespace: Target namespace
        metadata: Resource-level secret metadata
        owner: Body of the owning resource
        existing: Current Secret, if any

    Returns:
        Secret dict suitable for create or replace

    Raises:
        ValueError: If a ``data`` value is not valid base64
    """
    existing_meta = (existing or {}).get("metadata") or {}

    labels = {**(existing_meta.get("labels") or {}), **metadata.labels, **item.labels}
    annotations = {**(existing_meta.get("annotations") or {}), **metadata.annotations, **item.annotations}

    data: dict[str, str] = {}
    for key, value in item.data.items():
        decode_value(value)
        data[key] = value
    for key, value in item.string_data.items():
        data[key] = encode_value(value)

    secret_meta: dict[str, Any] = {
        "name": name,
        "namespace": namespace,
        "labels": labels,
        "annotations": annotations,
        "ownerReferences": [owner_reference(owner)],
    }
    if existing_meta.get("resourceVersion"):
        secret_meta["resourceVersion"] = existing_meta["resourceVersion"]

    secret: dict[str, Any] = {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": secret_meta,
        "type": item.type or (existing or {}).get("type") or "Opaque",
        "data": data,
    }
    if item.immutable is not None:
        secret["immutable"] = item.immutable
    return secret


def secret_differs(existing: Mapping[str, Any], desired: Mapping[str, Any]) -> bool:
    """Check whether writing ``desired`` would change ``existing``."""
    existing_meta = existing.get("metadata") or {}
    desired_meta = desired.get("metadata") or {}

    if (existing_meta.get("labels") or {}) != (desired_meta.get("labels") or {}):
        return True
    if (existing_meta.get("annotations") or {}) != (desired_meta.get("annotations") or {}):
        return True
    if (existing.get("data") or {}) != (desired.get("data") or {}):
        return True
    if (existing.get("type") or "Opaque") != desired.get("type"):
        return True
    if "immutable" in desired and existing.get("immutable") != desired["immutable"]:
        return True

    ref = controller_of(existing)
    desired_ref = controller_of(desired)
    if ref is None or desired_ref is None or ref.get("uid") != desired_ref.get("uid"):
        return True
    return False
