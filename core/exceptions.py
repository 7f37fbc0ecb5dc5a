"""
Domain errors and the unified API exception handler.

Service functions raise the ``ClinicError`` subclasses below; because they
are DRF ``APIException`` types the views can let them propagate and the
handler renders the status code each one declares.
"""
import logging

from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)


class ClinicError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'request could not be processed'
    default_code = 'clinic_error'


class ValidationError(ClinicError):
    """Malformed or missing input, unknown interval, bad identifiers."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'invalid input'
    default_code = 'validation_error'


class RecipientMissingError(ValidationError):
    """The patient exists but has nowhere to send the receipt to."""
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'patient email not available'
    default_code = 'recipient_missing'


class ConflictError(ClinicError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'conflicting record exists'
    default_code = 'conflict'


class NotFoundError(ClinicError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'not found'
    default_code = 'not_found'


class DependencyError(ClinicError):
    """An outbound side channel (SMTP, spreadsheet log) failed."""
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = 'upstream service failed'
    default_code = 'dependency_error'


def api_exception_handler(exc, context):
    resp = drf_exception_handler(exc, context)
    if resp is None:
        request = context.get('request') if context else None
        logger.error('unhandled error on %s', getattr(request, 'path', '-'), exc_info=exc)
        return Response(
            {'ok': False, 'error': {'code': 'server_error', 'message': 'internal server error'}},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    if isinstance(exc, ClinicError):
        code = exc.default_code
        message = exc.detail
    else:
        code = 'api_error'
        if isinstance(resp.data, dict):
            message = resp.data.get('detail') or resp.data
        else:
            message = resp.data
    return Response({'ok': False, 'error': {'code': code, 'message': message}}, status=resp.status_code)
