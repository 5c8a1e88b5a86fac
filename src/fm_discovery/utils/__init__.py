"""Utility Functions"""

from fm_discovery.utils.resilience import (
    ExponentialBackoff,
    service_startup_retry,
)

__all__ = [
    "ExponentialBackoff",
    "service_startup_retry",
]
