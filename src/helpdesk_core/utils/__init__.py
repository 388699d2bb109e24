"""Utility Functions"""

from helpdesk_core.utils.resilience import (
    RetryPolicy,
    service_startup_retry,
)

__all__ = [
    "RetryPolicy",
    "service_startup_retry",
]
