"""Decryption of SOPS encrypted secret items through the ``sops`` binary."""

from .session import DecryptionSession

__all__ = ["DecryptionSession"]
