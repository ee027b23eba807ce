"""Kubernetes operator materializing SOPS encrypted secrets."""

__version__ = "0.1.0"
