"""
Error taxonomy shared by the booking and payment workflows.

Workflows raise these instead of returning responses so the same rules apply
whether they are invoked from an API view, a management command or a test.
The DRF exception handler below renders them as ``{"error", "code", ...}``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class ServiceError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Request could not be processed."
    default_code = "error"

    def __init__(self, detail: str | None = None, *, code: str | None = None, extra: Optional[Dict[str, Any]] = None):
        super().__init__(detail=detail or self.default_detail, code=code or self.default_code)
        self.code = code or self.default_code
        self.extra = extra or {}

    @property
    def message(self) -> str:
        return str(self.detail)

    def as_payload(self) -> Dict[str, Any]:
        payload = {"error": self.message, "code": self.code}
        payload.update(self.extra)
        return payload


class ValidationError(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid input."
    default_code = "validation_error"


class NotFoundError(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found."
    default_code = "not_found"

    @classmethod
    def for_entity(cls, entity: str) -> "NotFoundError":
        return cls(f"{entity} not found.", code=f"{entity.lower().replace(' ', '_')}_not_found")


class ForbiddenError(ServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Not permitted."
    default_code = "forbidden"


class ConflictError(ServiceError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Conflicting request."
    default_code = "conflict"


class GatewayError(ServiceError):
    """
    Payment processor failure.

    ``declined`` errors are caused by the payer (card declined, expired card...)
    and map to 400; everything else means the processor could not be reached or
    misbehaved and maps to 502. ``outcome_unknown`` marks timeouts where the
    charge may or may not have happened.
    """

    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "Payment processor error."
    default_code = "gateway_error"

    def __init__(
        self,
        detail: str | None = None,
        *,
        code: str | None = None,
        declined: bool = False,
        outcome_unknown: bool = False,
        extra: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(detail, code=code, extra=extra)
        self.declined = declined
        self.outcome_unknown = outcome_unknown
        if declined:
            self.status_code = status.HTTP_400_BAD_REQUEST


class InternalError(ServiceError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Internal server error."
    default_code = "internal_error"


def api_exception_handler(exc, context):
    if isinstance(exc, ServiceError):
        return Response(exc.as_payload(), status=exc.status_code)

    response = exception_handler(exc, context)
    if response is not None:
        return response

    view = context.get("view")
    logger.exception("Unhandled error in %s", type(view).__name__ if view else "request", exc_info=exc)
    return Response(InternalError().as_payload(), status=status.HTTP_500_INTERNAL_SERVER_ERROR)
