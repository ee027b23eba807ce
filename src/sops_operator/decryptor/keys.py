"""Classification of the entries of a key-bearing Secret."""

from __future__ import annotations

import enum
import posixpath
from dataclasses import dataclass
from typing import Any, Mapping

from ..constants import (
    DECRYPTION_AGE_EXT,
    DECRYPTION_AWS_KMS_FILE,
    DECRYPTION_AZURE_AUTH_FILE,
    DECRYPTION_GCP_CREDS_FILE,
    DECRYPTION_PGP_EXT,
    DECRYPTION_VAULT_TOKEN_FILE,
)
from ..utils.secrets import decode_value


class KeyEntryType(enum.Enum):
    PGP = "pgp"
    AGE = "age"
    VAULT_TOKEN = "hc_vault"
    AWS_KMS = "kms"
    AZURE_KV = "azure_kv"
    GCP_KMS = "gcp_kms"


# Credential blobs are recognized by their full name only
_FILENAMES = {
    DECRYPTION_VAULT_TOKEN_FILE: KeyEntryType.VAULT_TOKEN,
    DECRYPTION_AWS_KMS_FILE: KeyEntryType.AWS_KMS,
    DECRYPTION_AZURE_AUTH_FILE: KeyEntryType.AZURE_KV,
    DECRYPTION_GCP_CREDS_FILE: KeyEntryType.GCP_KMS,
}

# Key files are recognized by extension
_EXTENSIONS = {
    DECRYPTION_PGP_EXT: KeyEntryType.PGP,
    DECRYPTION_AGE_EXT: KeyEntryType.AGE,
}


def classify_key_entry(filename: str) -> KeyEntryType | None:
    """Classify one data key of a key-bearing Secret.

    ``sops.vault-token``, ``sops.aws-kms``, ``sops.azure-kv`` and
    ``sops.gcp-kms`` must match exactly. Otherwise ``*.asc`` is a PGP key and
    ``*.agekey`` an age identity file. Anything else is not key material.
    """
    if filename in _FILENAMES:
        return _FILENAMES[filename]
    return _EXTENSIONS.get(posixpath.splitext(filename)[1])


@dataclass(frozen=True)
class KeyEntry:
    name: str
    type: KeyEntryType
    value: bytes


def key_entries(secret: Mapping[str, Any]) -> list[KeyEntry]:
    """List the recognized key entries of a Secret dict, sorted by name.

    Raises:
        ValueError: If a recognized entry is not valid base64
    """
    entries = []
    for name in sorted((secret.get("data") or {})):
        entry_type = classify_key_entry(name)
        if entry_type is None:
            continue
        entries.append(KeyEntry(name=name, type=entry_type, value=decode_value(secret["data"][name])))
    return entries
