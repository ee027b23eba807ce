"""Per-pass decryption session.

A session collects key material from key-bearing Secrets and decrypts
secret items with it. Everything it writes to disk (the GnuPG home and the
staged documents) lives in a private temporary directory that is removed
when the session is closed::

    with DecryptionSession(sops=SopsRunner(), gpg=GpgRunner()) as session:
        session.keys_from_secret(key_secret)
        item = session.decrypt(resource["sops"], encrypted_item)
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path
from typing import Any, Mapping

from ..api.models import SecretItem
from ..errors import DecryptionError, KeyImportError
from .backends import (
    AgeIdentities,
    AWSCredentials,
    AzureCredentials,
    Dispatcher,
    GCPCredentials,
    KeyServiceOptions,
    PGPKeyring,
    VaultToken,
    envelope_key_types,
)
from .keys import KeyEntry, KeyEntryType, key_entries
from .sops import FORMAT_JSON, GpgRunner, SopsRunner, stringify

logger = logging.getLogger(__name__)

_PARSERS = {
    KeyEntryType.AGE: AgeIdentities.parse,
    KeyEntryType.VAULT_TOKEN: VaultToken.parse,
    KeyEntryType.AWS_KMS: AWSCredentials.parse,
    KeyEntryType.AZURE_KV: AzureCredentials.parse,
    KeyEntryType.GCP_KMS: GCPCredentials.parse,
}


class DecryptionSession:
    """Transient key store and decryptor, used for a single reconciliation pass."""

    def __init__(self, sops: SopsRunner | None = None, gpg: GpgRunner | None = None):
        self.sops = sops or SopsRunner()
        self.gpg = gpg or GpgRunner()
        self.options = KeyServiceOptions()
        self.dispatcher = Dispatcher(self.options)
        self._workdir: Path | None = None

    def __enter__(self) -> DecryptionSession:
        self.open()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def open(self) -> None:
        if self._workdir is not None:
            return
        self._workdir = Path(tempfile.mkdtemp(prefix="sops-session-"))
        self.gnupg_home.mkdir(mode=0o700)

    def close(self) -> None:
        if self._workdir is None:
            return
        shutil.rmtree(self._workdir, ignore_errors=True)
        self._workdir = None

    @property
    def workdir(self) -> Path:
        if self._workdir is None:
            raise RuntimeError("decryption session is not open")
        return self._workdir

    @property
    def gnupg_home(self) -> Path:
        return self.workdir / "gnupg"

    def environment(self) -> dict[str, str]:
        return self.options.environment(self.workdir)

    def add_key(self, entry: KeyEntry, source: str) -> None:
        """Route one classified key entry to its backend.

        Raises:
            KeyImportError: If the entry can not be parsed or imported
        """
        try:
            if entry.type is KeyEntryType.PGP:
                self.gpg.import_key(self.gnupg_home, entry.value, self.environment())
                self.options.with_backend(PGPKeyring(self.gnupg_home))
            else:
                self.options.with_backend(_PARSERS[entry.type](entry.value))
        except Exception as e:
            raise KeyImportError(entry.name, source, e) from e

    def add_key_material(self, data: Mapping[str, str], source: str) -> int:
        """Load every recognized entry of a key-bearing Secret's data map.

        Args:
            data: Base64 encoded data of the Secret
            source: Secret reference used in error messages

        Returns:
            Number of entries loaded

        Raises:
            KeyImportError: On the first entry that fails to load
        """
        try:
            entries = key_entries({"data": dict(data)})
        except ValueError as e:
            raise KeyImportError("data", source, e) from e

        for entry in entries:
            self.add_key(entry, source)
        return len(entries)

    def keys_from_secret(self, secret: Mapping[str, Any]) -> int:
        """Load key material from a Secret dict."""
        meta = secret.get("metadata") or {}
        source = meta.get("name", "")
        if meta.get("namespace"):
            source = f"{meta['namespace']}/{source}"
        return self.add_key_material(secret.get("data") or {}, source)

    @staticmethod
    def is_encrypted(resource: Mapping[str, Any]) -> bool:
        """Check for the SOPS metadata block, the only encryption marker."""
        envelope = resource.get("sops")
        return isinstance(envelope, Mapping) and bool(envelope)

    def decrypt(self, envelope: Mapping[str, Any], item: SecretItem) -> SecretItem:
        """Decrypt one secret item.

        Args:
            envelope: The resource's ``sops`` metadata block
            item: Encrypted item as declared on the resource

        Returns:
            Decrypted item, with non-string scalars converted to strings

        Raises:
            DecryptionError: If the item can not be decrypted
        """
        if not envelope:
            raise DecryptionError(f"secret item {item.name} has no SOPS metadata")

        key_types = envelope_key_types(envelope)
        if key_types and not self.dispatcher.usable_backends(envelope):
            types = ", ".join(sorted(t.value for t in key_types))
            raise DecryptionError(f"no key material loaded for the key types of secret item {item.name} ({types})")

        document = {"spec": {"secrets": [item.to_dict()]}, "sops": dict(envelope)}
        try:
            decrypted = self.sops.decrypt_document(document, self.workdir, self.environment())
            secrets = (decrypted.get("spec") or {}).get("secrets")
            if not isinstance(secrets, list) or len(secrets) != 1 or not isinstance(secrets[0], Mapping):
                raise DecryptionError("decrypted document does not contain exactly one secret item")
            result = SecretItem.from_dict(secrets[0])
        except DecryptionError as e:
            raise DecryptionError(f"failed to decrypt secret item {item.name}: {e}") from e
        except Exception as e:
            raise DecryptionError(
                f"failed to emit encrypted {FORMAT_JSON} file as decrypted {FORMAT_JSON}: {e}"
            ) from e

        result.data = {k: stringify(v) for k, v in result.data.items()}
        result.string_data = {k: stringify(v) for k, v in result.string_data.items()}
        result.labels = {k: stringify(v) for k, v in result.labels.items()}
        result.annotations = {k: stringify(v) for k, v in result.annotations.items()}
        return result
