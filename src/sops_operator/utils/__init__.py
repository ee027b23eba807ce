"""Utility modules for the SOPS Operator."""
