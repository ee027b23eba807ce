"""Main entry point for the SOPS Operator."""

from __future__ import annotations

import logging
import threading
from typing import Any

import kopf

from . import health
from . import logging as structured_logging
from .api.registry import default_registry
from .config import OperatorConfig
from .handlers import global_sops_secret, provider, sops_secret, watches  # noqa: F401
from .store import ResourceStore, load_kubernetes_config
from .tracing import initialize_tracing

logger = logging.getLogger(__name__)


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, memo: kopf.Memo, **_: Any) -> None:
    """Configure the operator and wire its dependencies into the memo."""
    # Set up structured JSON logging
    structured_logging.setup_structured_logging()

    config = OperatorConfig.from_env()
    initialize_tracing()

    # Configure persistence
    # Use AnnotationsProgressStorage to avoid conflicts with status updates
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage()
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage()

    settings.posting.level = logging.WARNING
    settings.networking.request_timeout = 30.0
    settings.execution.max_workers = config.max_workers

    if config.leader_election:
        settings.peering.name = config.controller_name
        settings.peering.mandatory = True
        settings.peering.clusterwide = True
    else:
        settings.peering.standalone = True

    load_kubernetes_config()

    stop_event = threading.Event()
    registry = default_registry()
    memo.config = config
    memo.registry = registry
    memo.stop_event = stop_event
    memo.store = ResourceStore(registry, stop_event=stop_event)
    memo.provider_status = {}

    for handler in (provider._handler, sops_secret._handler, global_sops_secret._handler):
        handler.configure(config)

    # Start metrics HTTP server with health check endpoints
    health.start_metrics_server(config.metrics_port)
    health.mark_ready()

    logger.info(f"SOPS Operator started (status publishing: {config.enable_status})")


@kopf.on.cleanup()
def shutdown(memo: kopf.Memo, **_: Any) -> None:
    """Stop in-flight passes from issuing further API calls."""
    health.mark_not_ready()
    stop_event = getattr(memo, "stop_event", None)
    if stop_event is not None:
        stop_event.set()
