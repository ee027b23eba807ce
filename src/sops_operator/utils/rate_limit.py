"""Rate limiting utilities for Kubernetes API calls."""

from __future__ import annotations

import os
import threading
import time
from functools import wraps
from typing import Any, Callable, TypeVar

from kubernetes.client.exceptions import ApiException

from .. import metrics

_F = TypeVar("_F", bound=Callable[..., Any])

# Rate limit configuration
_K8S_RATE_LIMIT_PER_SECOND = float(os.getenv("K8S_RATE_LIMIT_PER_SECOND", "10.0"))

# Track last call time, shared by all kopf worker threads
_k8s_last_call_time: float = 0.0
_k8s_lock = threading.Lock()


def rate_limit_k8s(func: _F) -> _F:
    """Decorator to rate limit Kubernetes API calls.

    Spaces calls at least ``1 / K8S_RATE_LIMIT_PER_SECOND`` seconds apart to
    avoid overwhelming the Kubernetes API server.
    """
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        global _k8s_last_call_time
        with _k8s_lock:
            min_interval = 1.0 / _K8S_RATE_LIMIT_PER_SECOND
            time_since_last_call = time.time() - _k8s_last_call_time
            if time_since_last_call < min_interval:
                time.sleep(min_interval - time_since_last_call)
            _k8s_last_call_time = time.time()
        return func(*args, **kwargs)

    return wrapper  # type: ignore


def is_rate_limit_error(e: Exception) -> bool:
    """Check whether an exception is a Kubernetes API throttling response."""
    if not isinstance(e, ApiException):
        return False
    # Kubernetes API rate limit errors typically return 429 or 503
    return e.status == 429 or (e.status == 503 and "rate limit" in str(e).lower())


def handle_rate_limit_error(e: Exception, attempt: int, max_retries: int = 3) -> bool:
    """Back off if an API exception is a rate limit error.

    Args:
        e: Exception raised by the API call
        attempt: Number of retries already made for this call
        max_retries: Maximum number of retries

    Returns:
        True if the caller should retry, False otherwise
    """
    if not is_rate_limit_error(e) or attempt >= max_retries:
        return False

    metrics.rate_limit_hits_total.labels(api_type="k8s").inc()
    # Exponential backoff: 1s, 2s, 4s
    time.sleep(2 ** attempt)
    return True
