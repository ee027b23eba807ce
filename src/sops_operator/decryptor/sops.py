"""Thin wrappers around the external ``sops`` and ``gpg`` binaries."""

from __future__ import annotations

import json
import logging
import os
import subprocess
from pathlib import Path
from typing import Any, Mapping

from ..constants import MAX_ENCRYPTED_DOCUMENT_SIZE
from ..errors import DecryptionError, SopsBinaryError

logger = logging.getLogger(__name__)

FORMAT_JSON = "json"


def run_binary(
    binary: str,
    args: list[str],
    env: Mapping[str, str],
    input: bytes | None = None,
    timeout: float | None = None,
) -> bytes:
    """Run an external binary and return its stdout.

    Args:
        binary: Executable name or path
        args: Command line arguments
        env: Complete environment of the child process
        input: Bytes written to stdin
        timeout: Seconds before the child is killed

    Returns:
        Captured stdout

    Raises:
        SopsBinaryError: If the binary is missing, times out or exits non-zero
    """
    try:
        result = subprocess.run(
            [binary, *args],
            input=input,
            capture_output=True,
            env=dict(env),
            timeout=timeout,
            check=False,
        )
    except FileNotFoundError as e:
        raise SopsBinaryError(binary, "executable not found") from e
    except subprocess.TimeoutExpired as e:
        raise SopsBinaryError(binary, f"timed out after {timeout}s") from e

    if result.returncode != 0:
        stderr = result.stderr.decode("utf-8", errors="replace").strip()
        raise SopsBinaryError(binary, stderr or "exited with an error", result.returncode)

    return result.stdout


def stringify(value: Any) -> Any:
    """Convert a decrypted scalar into the string stored in a Secret."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return value


class SopsRunner:
    """Decrypts JSON documents with the ``sops`` binary."""

    def __init__(self, binary: str = "sops", timeout: float = 30.0, check_mac: bool = False):
        self.binary = binary
        self.timeout = timeout
        self.check_mac = check_mac

    def decrypt_document(self, document: Mapping[str, Any], workdir: Path, env: Mapping[str, str]) -> dict[str, Any]:
        """Decrypt a SOPS JSON document.

        Args:
            document: Encrypted document, including its ``sops`` envelope
            workdir: Private directory the document is staged in
            env: Environment of the sops process

        Returns:
            Decrypted document

        Raises:
            DecryptionError: If the document is too large or can not be decrypted
        """
        try:
            payload = json.dumps(document).encode("utf-8")
            if len(payload) > MAX_ENCRYPTED_DOCUMENT_SIZE:
                raise DecryptionError(
                    f"encrypted document exceeds maximum size of {MAX_ENCRYPTED_DOCUMENT_SIZE} bytes"
                )

            path = workdir / "document.sops.json"
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(payload)

            try:
                args = ["--decrypt", "--input-type", FORMAT_JSON, "--output-type", FORMAT_JSON]
                if not self.check_mac:
                    args.append("--ignore-mac")
                args.append(str(path))
                output = run_binary(self.binary, args, env, timeout=self.timeout)
            finally:
                path.unlink(missing_ok=True)

            decrypted = json.loads(output)
            if not isinstance(decrypted, dict):
                raise DecryptionError(f"sops returned a {type(decrypted).__name__}, expected an object")
            return decrypted
        except DecryptionError:
            raise
        except Exception as e:
            raise DecryptionError(
                f"failed to emit encrypted {FORMAT_JSON} file as decrypted {FORMAT_JSON}: {e}"
            ) from e


class GpgRunner:
    """Imports armored keys into a private GnuPG home."""

    def __init__(self, binary: str = "gpg", timeout: float = 30.0):
        self.binary = binary
        self.timeout = timeout

    def import_key(self, homedir: Path, key: bytes, env: Mapping[str, str]) -> None:
        """Import an armored key.

        Raises:
            SopsBinaryError: If gpg rejects the key
        """
        run_binary(
            self.binary,
            ["--homedir", str(homedir), "--batch", "--no-tty", "--import"],
            env,
            input=key,
            timeout=self.timeout,
        )
