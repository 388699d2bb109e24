"""Viewer context extraction from API gateway headers.

Services that render case threads on behalf of a user receive the user's
identity in ``X-User-*`` headers set by the gateway after token validation.
The resulting ``Viewer`` drives the render-time visibility filter.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request, status

from helpdesk_core.models import UserRole, Viewer

logger = logging.getLogger(__name__)


@dataclass
class RequestContext:
    """Viewer plus request tracing information.

    Attributes:
        viewer: Who the request is made for
        correlation_id: Optional correlation ID for request tracing
    """

    viewer: Viewer
    correlation_id: Optional[str] = None


def get_request_context(request: Request) -> RequestContext:
    """FastAPI dependency building a ``RequestContext`` from gateway headers.

    Usage in route:
        @router.get("/cases/{case_id}/thread")
        async def thread(case_id: str, ctx: RequestContext = Depends(get_request_context)):
            ...

    Raises:
        HTTPException: 401 if X-User-ID is missing, 403 if X-User-Role is unknown
    """
    user_id = request.headers.get("X-User-ID")
    if not user_id:
        logger.error("Missing X-User-ID header in request")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-ID header required (should be added by API Gateway)",
        )

    role_header = (request.headers.get("X-User-Role") or UserRole.USER.value).strip().lower()
    try:
        role = UserRole(role_header)
    except ValueError:
        logger.warning(f"Rejected unknown X-User-Role header: {role_header}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Unknown role: {role_header}",
        )

    return RequestContext(
        viewer=Viewer(user_id=user_id, role=role),
        correlation_id=request.headers.get("X-Correlation-ID"),
    )


def get_viewer(request: Request) -> Viewer:
    """FastAPI dependency returning only the ``Viewer``."""
    return get_request_context(request).viewer
