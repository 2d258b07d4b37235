# bloodconnect/exceptions.py
"""
Typed errors raised by the matching and donation core.

Each error carries a ``kind`` (validation, authentication, authorization,
not_found, conflict, business_logic, server) and maps to an HTTP status
through DRF's ``APIException`` machinery.
"""
import logging

from django.conf import settings
from django.core.exceptions import PermissionDenied as DjangoPermissionDenied
from django.http import Http404
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class BloodConnectError(exceptions.APIException):
    kind = 'server'
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'An unexpected error occurred.'
    default_code = 'server_error'

    def __init__(self, detail=None, code=None, details=None):
        super().__init__(detail, code)
        self.details = details

    @property
    def message(self):
        return str(self.detail)


class RequestValidationError(BloodConnectError):
    kind = 'validation'
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Invalid input.'
    default_code = 'validation_error'


class AuthenticationError(BloodConnectError):
    kind = 'authentication'
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = 'Authentication required.'
    default_code = 'authentication_error'


class AuthorizationError(BloodConnectError):
    kind = 'authorization'
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'You are not allowed to perform this action.'
    default_code = 'authorization_error'


class NotFoundError(BloodConnectError):
    kind = 'not_found'
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Not found.'
    default_code = 'not_found'


class ConflictError(BloodConnectError):
    kind = 'conflict'
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Conflicting state.'
    default_code = 'conflict'


class BusinessLogicError(BloodConnectError):
    kind = 'business_logic'
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'This action is not allowed right now.'
    default_code = 'business_logic_error'


class ServerError(BloodConnectError):
    pass


# DRF's own exceptions, mapped onto the same taxonomy
DRF_KINDS = [
    (exceptions.ValidationError, 'validation'),
    (exceptions.ParseError, 'validation'),
    (exceptions.NotAuthenticated, 'authentication'),
    (exceptions.AuthenticationFailed, 'authentication'),
    (exceptions.PermissionDenied, 'authorization'),
    (exceptions.NotFound, 'not_found'),
    (exceptions.MethodNotAllowed, 'validation'),
]


def kind_for(exc):
    if isinstance(exc, BloodConnectError):
        return exc.kind
    for exc_class, kind in DRF_KINDS:
        if isinstance(exc, exc_class):
            return kind
    return 'server'


def api_exception_handler(exc, context):
    """
    Render every error as ``{"error": ..., "kind": ..., "details": ...}``.
    Unexpected exceptions are logged and reported as kind ``server``.
    """
    if isinstance(exc, Http404):
        exc = exceptions.NotFound()
    elif isinstance(exc, DjangoPermissionDenied):
        exc = exceptions.PermissionDenied()

    response = exception_handler(exc, context)
    view = context.get('view')
    where = view.__class__.__name__ if view else 'api'

    if response is None:
        logger.exception(f"Unhandled error in {where}: {exc}")
        message = str(exc) if settings.DEBUG else 'Internal server error'
        return Response(
            {'error': message, 'kind': 'server', 'details': None},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    details = getattr(exc, 'details', None)
    if isinstance(exc, exceptions.ValidationError):
        details = response.data
        message = 'Validation failed'
    else:
        message = str(exc.detail) if hasattr(exc, 'detail') else str(exc)

    if response.status_code >= 500:
        logger.error(f"{where} failed: {message}")
    else:
        logger.info(f"{where} rejected request ({kind_for(exc)}): {message}")

    response.data = {
        'error': message,
        'kind': kind_for(exc),
        'details': details,
    }
    return response
