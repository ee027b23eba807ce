"""Key backends and the dispatcher that routes envelopes onto them.

Each backend holds only its own configuration, parsed from one entry of a
key-bearing Secret, and contributes environment variables to the ``sops``
child process. The operator's own environment is never passed on, so
credentials only ever come from cluster secrets.
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Union

import yaml

from .keys import KeyEntryType

_AGE_IDENTITY = re.compile(r"^AGE-SECRET-KEY-1[0-9A-Z]+$")


def _parse_structured(data: bytes) -> dict[str, Any]:
    """Parse a JSON or YAML credential blob into a mapping."""
    text = data.decode("utf-8")
    try:
        parsed = json.loads(text)
    except ValueError:
        parsed = yaml.safe_load(text)
    if not isinstance(parsed, dict):
        raise ValueError("credentials must be a JSON or YAML object")
    return parsed


@dataclass(frozen=True)
class PGPKeyring:
    """Session-private GnuPG home that armored keys were imported into."""

    homedir: Path
    imported: int = 1

    def environment(self) -> dict[str, str]:
        return {"GNUPGHOME": str(self.homedir)}


@dataclass(frozen=True)
class AgeIdentities:
    identities: tuple[str, ...] = ()

    @classmethod
    def parse(cls, data: bytes) -> AgeIdentities:
        identities = []
        for line in data.decode("utf-8").splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if not _AGE_IDENTITY.match(line):
                raise ValueError("malformed age identity")
            identities.append(line)
        if not identities:
            raise ValueError("no age identities found")
        return cls(tuple(identities))

    def merge(self, other: AgeIdentities) -> AgeIdentities:
        return AgeIdentities(self.identities + tuple(i for i in other.identities if i not in self.identities))

    def environment(self) -> dict[str, str]:
        return {"SOPS_AGE_KEY": "\n".join(self.identities)}


@dataclass(frozen=True)
class VaultToken:
    token: str

    @classmethod
    def parse(cls, data: bytes) -> VaultToken:
        token = data.decode("utf-8").strip()
        if not token:
            raise ValueError("empty vault token")
        return cls(token)

    def environment(self) -> dict[str, str]:
        return {"VAULT_TOKEN": self.token}


@dataclass(frozen=True)
class AWSCredentials:
    access_key_id: str
    secret_access_key: str
    session_token: str | None = None

    @classmethod
    def parse(cls, data: bytes) -> AWSCredentials:
        parsed = _parse_structured(data)
        access_key_id = parsed.get("aws_access_key_id")
        secret_access_key = parsed.get("aws_secret_access_key")
        if not access_key_id or not secret_access_key:
            raise ValueError("aws_access_key_id and aws_secret_access_key are required")
        return cls(str(access_key_id), str(secret_access_key), parsed.get("aws_session_token"))

    def environment(self) -> dict[str, str]:
        env = {
            "AWS_ACCESS_KEY_ID": self.access_key_id,
            "AWS_SECRET_ACCESS_KEY": self.secret_access_key,
        }
        if self.session_token:
            env["AWS_SESSION_TOKEN"] = str(self.session_token)
        return env


@dataclass(frozen=True)
class AzureCredentials:
    tenant_id: str
    client_id: str
    client_secret: str

    @classmethod
    def parse(cls, data: bytes) -> AzureCredentials:
        parsed = _parse_structured(data)
        tenant_id = parsed.get("tenantId") or parsed.get("tenant")
        client_id = parsed.get("clientId") or parsed.get("appId")
        client_secret = parsed.get("clientSecret") or parsed.get("password")
        if not tenant_id or not client_id or not client_secret:
            raise ValueError("tenantId, clientId and clientSecret are required")
        return cls(str(tenant_id), str(client_id), str(client_secret))

    def environment(self) -> dict[str, str]:
        return {
            "AZURE_TENANT_ID": self.tenant_id,
            "AZURE_CLIENT_ID": self.client_id,
            "AZURE_CLIENT_SECRET": self.client_secret,
        }


@dataclass(frozen=True)
class GCPCredentials:
    credentials_json: str

    @classmethod
    def parse(cls, data: bytes) -> GCPCredentials:
        text = data.decode("utf-8")
        try:
            parsed = json.loads(text)
        except ValueError as e:
            raise ValueError(f"invalid service account JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise ValueError("service account credentials must be a JSON object")
        return cls(text)

    def environment(self) -> dict[str, str]:
        return {"GOOGLE_CREDENTIALS": self.credentials_json}


Backend = Union[PGPKeyring, AgeIdentities, VaultToken, AWSCredentials, AzureCredentials, GCPCredentials]

# Envelope key types, as they appear in the ``sops`` metadata block
METADATA_KEY_TYPES: dict[str, KeyEntryType] = {entry.value: entry for entry in KeyEntryType}

_BACKEND_TYPES: dict[type, KeyEntryType] = {
    PGPKeyring: KeyEntryType.PGP,
    AgeIdentities: KeyEntryType.AGE,
    VaultToken: KeyEntryType.VAULT_TOKEN,
    AWSCredentials: KeyEntryType.AWS_KMS,
    AzureCredentials: KeyEntryType.AZURE_KV,
    GCPCredentials: KeyEntryType.GCP_KMS,
}


@dataclass
class KeyServiceOptions:
    """Builder collecting at most one configured backend per key type.

    age identities accumulate, every other backend is replaced by the last
    one set.
    """

    backends: dict[KeyEntryType, Backend] = field(default_factory=dict)

    def with_backend(self, backend: Backend) -> KeyServiceOptions:
        entry_type = _BACKEND_TYPES[type(backend)]
        current = self.backends.get(entry_type)
        if isinstance(backend, AgeIdentities) and isinstance(current, AgeIdentities):
            backend = current.merge(backend)
        elif isinstance(backend, PGPKeyring) and isinstance(current, PGPKeyring):
            backend = PGPKeyring(backend.homedir, current.imported + backend.imported)
        self.backends[entry_type] = backend
        return self

    def environment(self, home: Path) -> dict[str, str]:
        """Build the complete environment of a sops process."""
        env = {
            "PATH": os.environ.get("PATH", "/usr/local/bin:/usr/bin:/bin"),
            "HOME": str(home),
            "GNUPGHOME": str(home / "gnupg"),
        }
        for backend in self.backends.values():
            env.update(backend.environment())
        return env


def envelope_key_types(envelope: Mapping[str, Any]) -> set[KeyEntryType]:
    """List the key types an envelope was encrypted to, across all key groups."""
    groups: list[Mapping[str, Any]] = [envelope]
    groups.extend(g for g in envelope.get("key_groups") or [] if isinstance(g, Mapping))

    found = set()
    for group in groups:
        for name, entry_type in METADATA_KEY_TYPES.items():
            if group.get(name):
                found.add(entry_type)
    return found


class Dispatcher:
    """Routes an envelope onto the backends configured in a session."""

    def __init__(self, options: KeyServiceOptions):
        self.options = options

    def backend_for(self, key_type: str | KeyEntryType) -> Backend | None:
        if isinstance(key_type, str):
            if key_type not in METADATA_KEY_TYPES:
                return None
            key_type = METADATA_KEY_TYPES[key_type]
        return self.options.backends.get(key_type)

    def usable_backends(self, envelope: Mapping[str, Any]) -> list[Backend]:
        """Backends that can open at least one key of the envelope."""
        backends = []
        for key_type in sorted(envelope_key_types(envelope), key=lambda t: t.value):
            backend = self.backend_for(key_type)
            if backend is not None:
                backends.append(backend)
        return backends
