"""Process configuration for the SOPS Operator."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from .constants import FIELD_MANAGER


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = env.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class OperatorConfig:
    """Runtime configuration, read once at startup."""

    enable_status: bool = True
    controller_name: str = FIELD_MANAGER
    metrics_port: int = 8080
    leader_election: bool = False
    max_workers: int = 4
    resync_interval: float = 300.0
    failed_secrets_interval: float = 60.0
    sops_binary: str = "sops"
    gpg_binary: str = "gpg"
    decrypt_timeout: float = 30.0
    check_sops_mac: bool = False
    status_retry_steps: int = 4

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> OperatorConfig:
        """Build configuration from environment variables.

        Args:
            env: Mapping to read from (defaults to ``os.environ``)

        Returns:
            OperatorConfig instance

        Raises:
            ValueError: If a numeric variable can not be parsed
        """
        if env is None:
            env = os.environ

        return cls(
            enable_status=_env_bool(env, "ENABLE_STATUS", True),
            controller_name=env.get("CONTROLLER_NAME", FIELD_MANAGER),
            metrics_port=int(env.get("METRICS_PORT", "8080")),
            leader_election=_env_bool(env, "LEADER_ELECT", False),
            max_workers=int(env.get("MAX_WORKERS", "4")),
            resync_interval=float(env.get("RESYNC_INTERVAL_SECONDS", "300")),
            failed_secrets_interval=float(env.get("FAILED_SECRETS_INTERVAL_SECONDS", "60")),
            sops_binary=env.get("SOPS_BINARY", "sops"),
            gpg_binary=env.get("GPG_BINARY", "gpg"),
            decrypt_timeout=float(env.get("SOPS_DECRYPT_TIMEOUT_SECONDS", "30")),
            check_sops_mac=_env_bool(env, "SOPS_CHECK_MAC", False),
            status_retry_steps=int(env.get("STATUS_RETRY_STEPS", "4")),
        )
