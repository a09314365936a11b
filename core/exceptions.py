"""
Domain error taxonomy for the expense review API.

Every expected, caller-recoverable failure is a ``DomainError`` subclass with a
stable machine-readable ``code`` and an HTTP status. Views never build error
responses by hand: they let the error propagate and ``api_exception_handler``
renders ``{"error": <message>, "code": <code>}``.
"""
from __future__ import annotations

import logging

from rest_framework import exceptions as drf_exceptions
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)


class DomainError(Exception):
    code = "domain_error"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Request could not be processed."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def as_payload(self) -> dict:
        return {"error": self.message, "code": self.code}


class AuthenticationRequired(DomainError):
    code = "authentication_required"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"


class OrganizationContextMissing(DomainError):
    code = "organization_context_missing"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Organization context required"


class PermissionDenied(DomainError):
    code = "permission_denied"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Insufficient permissions"


class NotFound(DomainError):
    # Used both for missing rows and rows owned by another organization.
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ValidationError(DomainError):
    code = "validation_error"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class InvalidStateTransition(DomainError):
    code = "invalid_state_transition"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Submission is not in a reviewable state"


class DependencyFailure(DomainError):
    code = "dependency_failure"
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "An upstream service failed. Please retry later."


def api_exception_handler(exc, context):
    """DRF exception handler that renders every error in the domain envelope."""
    if isinstance(exc, DomainError):
        if isinstance(exc, DependencyFailure):
            logger.warning("[api] dependency failure in %s: %s", _view_name(context), exc)
        return Response(exc.as_payload(), status=exc.status_code)

    if isinstance(exc, (drf_exceptions.NotAuthenticated, drf_exceptions.AuthenticationFailed)):
        return Response(AuthenticationRequired().as_payload(), status=status.HTTP_401_UNAUTHORIZED)

    response = drf_exception_handler(exc, context)
    if response is None:
        return None

    if isinstance(exc, drf_exceptions.PermissionDenied):
        code = PermissionDenied.code
    elif isinstance(exc, drf_exceptions.NotFound):
        code = NotFound.code
    elif response.status_code == status.HTTP_400_BAD_REQUEST:
        code = ValidationError.code
    else:
        code = getattr(exc, "default_code", "error")
    response.data = {"error": _flatten_detail(getattr(exc, "detail", response.data)), "code": code}
    return response


def _flatten_detail(detail) -> str:
    if isinstance(detail, dict):
        parts = []
        for field, value in detail.items():
            parts.append(f"{field}: {_flatten_detail(value)}")
        return "; ".join(parts)
    if isinstance(detail, (list, tuple)):
        return " ".join(_flatten_detail(item) for item in detail)
    return str(detail)


def _view_name(context) -> str:
    view = (context or {}).get("view")
    return view.__class__.__name__ if view is not None else "unknown view"
