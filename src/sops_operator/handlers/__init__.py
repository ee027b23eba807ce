"""Handlers for SOPS Operator CRDs."""

from . import global_sops_secret, provider, sops_secret, watches

__all__ = ["global_sops_secret", "provider", "sops_secret", "watches"]
