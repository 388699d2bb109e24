"""Error taxonomy for the helpdesk core library.

Low-level operations raise one of these typed errors; the thread synchronizer
catches them at the boundary of each user action and turns them into notices,
pending-local markers or a silent cache fallback.
"""

from typing import Any, Dict, Optional

import httpx


class HelpdeskError(Exception):
    """Base error - all library errors extend this"""

    error_code: str = "HELPDESK_ERROR"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to a serializable dict"""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details,
            }
        }


# Backend / network errors
class TransientBackendError(HelpdeskError):
    """Network failure, timeout, 5xx, 408 or 429 - safe to retry"""
    error_code = "TRANSIENT_BACKEND_ERROR"
    retryable = True


class BackendRequestError(HelpdeskError):
    """Backend rejected the request (4xx other than auth/timeouts)"""
    error_code = "BACKEND_REQUEST_ERROR"


# Authentication & authorization
class SessionExpiredError(HelpdeskError):
    """Access token missing, invalid or expired (401)"""
    error_code = "SESSION_EXPIRED"


class AccessDeniedError(HelpdeskError):
    """Viewer lacks permission for the content or action"""
    error_code = "ACCESS_DENIED"


class AuthCircuitOpenError(HelpdeskError):
    """Authentication attempts are suppressed by the circuit breaker"""
    error_code = "AUTH_CIRCUIT_OPEN"

    def __init__(self, reason: str, remaining_seconds: int):
        super().__init__(
            f"Authentication suppressed for {remaining_seconds}s: {reason}",
            details={"reason": reason, "remaining_seconds": remaining_seconds},
        )
        self.reason = reason
        self.remaining_seconds = remaining_seconds


# Validation
class ThreadValidationError(HelpdeskError):
    """User input rejected before any network call"""
    error_code = "VALIDATION_ERROR"


# Partial failures
class PartialUploadError(HelpdeskError):
    """Some but not all attachments were stored"""
    error_code = "PARTIAL_UPLOAD"

    def __init__(self, report):
        failed = [f.file_name for f in report.failed]
        super().__init__(
            f"{len(failed)} of {report.total} attachment(s) failed to upload",
            details={
                "succeeded": [a.file_name for a in report.succeeded],
                "failed": failed,
            },
        )
        self.report = report


# Local persistence
class OutboxError(HelpdeskError):
    """Durable pending-message queue could not be read or written"""
    error_code = "OUTBOX_ERROR"


RETRYABLE_STATUS_CODES = {408, 429}


def error_from_response(response: httpx.Response) -> HelpdeskError:
    """Translate a failed HTTP response into the library error taxonomy."""
    try:
        body = response.json()
        message = body.get("message") or body.get("error") or response.reason_phrase
    except (ValueError, AttributeError):
        message = response.text or response.reason_phrase

    details = {"status_code": response.status_code, "url": str(response.request.url)}

    if response.status_code == 401:
        return SessionExpiredError(message, details=details)
    if response.status_code == 403:
        return AccessDeniedError(message, details=details)
    if response.status_code >= 500 or response.status_code in RETRYABLE_STATUS_CODES:
        return TransientBackendError(message, details=details)
    return BackendRequestError(message, details=details)


def is_retryable(exc: BaseException) -> bool:
    """Return True if an operation failing with ``exc`` may be attempted again."""
    if not isinstance(exc, Exception):
        # Cancellation and interpreter exits must propagate
        return False
    if isinstance(exc, HelpdeskError):
        return exc.retryable
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status >= 500 or status in RETRYABLE_STATUS_CODES
    if isinstance(exc, (httpx.TransportError, ConnectionError, TimeoutError)):
        return True
    # Unknown failures from injected collaborators are treated as transient
    return not isinstance(exc, (ValueError, TypeError, KeyError))
