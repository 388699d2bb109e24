"""Authentication utilities: session guard, circuit breaker, session provider
and viewer extraction from gateway headers.
"""

from helpdesk_core.auth.request_context import RequestContext, get_request_context, get_viewer
from helpdesk_core.auth.session_guard import (
    AuthSessionGuard,
    BreakerStatus,
    CircuitBreaker,
    CircuitBreakerState,
)
from helpdesk_core.auth.session_provider import Session, SessionProvider

__all__ = [
    "AuthSessionGuard",
    "BreakerStatus",
    "CircuitBreaker",
    "CircuitBreakerState",
    "RequestContext",
    "Session",
    "SessionProvider",
    "get_request_context",
    "get_viewer",
]
