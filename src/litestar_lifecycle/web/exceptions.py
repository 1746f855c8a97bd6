"""Exception handling for lifecycle web endpoints.

This module maps the lifecycle exception hierarchy onto HTTP responses:
validation rejections are 400, unauthorized approvers 403, missing records 404,
illegal transitions and repeated decisions 409, and store outages 503.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from litestar import MediaType, Response
from litestar.status_codes import (
    HTTP_400_BAD_REQUEST,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from litestar_lifecycle.exceptions import (
    ApprovalAlreadyDecidedError,
    InvalidTransitionError,
    LifecycleError,
    RecordNotFoundError,
    TransientStoreError,
    UnauthorizedApproverError,
    ValidationError,
    WorkflowNotFoundError,
)

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable

    from litestar import Request

__all__ = [
    "STATUS_CODES",
    "exception_handlers",
    "lifecycle_error_handler",
]

logger = logging.getLogger(__name__)

STATUS_CODES: dict[type[LifecycleError], int] = {
    ValidationError: HTTP_400_BAD_REQUEST,
    UnauthorizedApproverError: HTTP_403_FORBIDDEN,
    RecordNotFoundError: HTTP_404_NOT_FOUND,
    WorkflowNotFoundError: HTTP_404_NOT_FOUND,
    InvalidTransitionError: HTTP_409_CONFLICT,
    ApprovalAlreadyDecidedError: HTTP_409_CONFLICT,
    TransientStoreError: HTTP_503_SERVICE_UNAVAILABLE,
}
"""HTTP status per exception class; subclasses inherit their parent's code."""


def _status_for(exc: LifecycleError) -> int:
    for exc_type in type(exc).__mro__:
        if exc_type in STATUS_CODES:
            return STATUS_CODES[exc_type]  # type: ignore[index]
    return HTTP_500_INTERNAL_SERVER_ERROR


def lifecycle_error_handler(request: Request[Any, Any, Any], exc: LifecycleError) -> Response[dict[str, Any]]:
    """Render a lifecycle exception as a JSON error response.

    Args:
        request: The request that raised.
        exc: The lifecycle exception.

    Returns:
        A response carrying ``status_code``, ``detail`` and, for validation
        errors, the individual ``errors``.
    """
    status_code = _status_for(exc)
    if status_code >= HTTP_500_INTERNAL_SERVER_ERROR:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    content: dict[str, Any] = {"status_code": status_code, "detail": str(exc)}
    if isinstance(exc, ValidationError):
        content["errors"] = exc.errors
    return Response(content=content, status_code=status_code, media_type=MediaType.JSON)


def exception_handlers() -> dict[type[Exception], Callable[..., Response[Any]]]:
    """Exception handlers to register on the application."""
    return {LifecycleError: lifecycle_error_handler}
