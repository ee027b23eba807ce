"""Exceptions raised by the SOPS Operator.

Policy failures are terminal for a reconciliation pass and are never
requeued. Everything that is not a ``SopsOperatorError`` is treated as a
transient infrastructure failure by the handlers.
"""

from __future__ import annotations

from typing import Any


class SopsOperatorError(Exception):
    """Base exception for all operator errors."""


class PolicyError(SopsOperatorError):
    """Raised when a resource can not be decrypted by policy.

    Policy failures clean up previously materialized secrets and are not
    retried with a delay.
    """


class NoDecryptionProviderError(PolicyError):
    """Raised when no SopsProvider selects a SOPS secret."""

    def __init__(self, name: str, namespace: str | None = None):
        self.name = name
        self.namespace = namespace
        if namespace:
            super().__init__(f"secret {namespace}/{name} has no decryption providers")
        else:
            super().__init__(f"secret {name} has no decryption providers")


class NotSopsEncryptedError(PolicyError):
    """Raised when a resource carries no SOPS metadata."""

    def __init__(self, message: str = "secret missing SOPS encryption marker (not encrypted)"):
        super().__init__(message)


class SecretReconciliationError(SopsOperatorError):
    """Raised when one or more secret items failed to reconcile."""


class OwnershipConflictError(SopsOperatorError):
    """Raised when a target secret exists but is owned by someone else."""

    def __init__(self, name: str, namespace: str):
        self.name = name
        self.namespace = namespace
        super().__init__(
            f"secret {namespace}/{name} already present, but not provisioned by sops-operator"
        )


class DecryptionError(SopsOperatorError):
    """Raised when a secret item can not be decrypted."""


class KeyImportError(SopsOperatorError):
    """Raised when key material from a key secret can not be loaded."""

    def __init__(self, entry: str, secret: str, cause: Any):
        self.entry = entry
        self.secret = secret
        super().__init__(
            f"failed to import data from {entry} decryption Secret '{secret}': {cause}"
        )


class SopsBinaryError(SopsOperatorError):
    """Raised when an external binary (sops, gpg) fails."""

    def __init__(self, binary: str, message: str, returncode: int | None = None):
        self.binary = binary
        self.returncode = returncode
        super().__init__(f"{binary}: {message}")


class MissingKubernetesSecretError(SopsOperatorError):
    """Raised when a referenced key secret does not exist."""

    def __init__(self, name: str, namespace: str):
        self.name = name
        self.namespace = namespace
        super().__init__(f"Secret not found: {namespace}/{name}")


class SelectorError(SopsOperatorError):
    """Raised when a label or namespace selector is malformed."""


class ReconcileCancelledError(SopsOperatorError):
    """Raised when the operator is stopping while a pass is running."""
