import logging

from rest_framework import exceptions, status
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)


class ValidationError(exceptions.ValidationError):
    """Malformed input, rejected before any write."""
    default_detail = 'Invalid input.'
    default_code = 'invalid'


class Forbidden(exceptions.PermissionDenied):
    """The actor's role does not allow this write (self-bid, non-owner mutation)."""
    default_detail = 'You are not allowed to perform this action.'
    default_code = 'forbidden'


class NotFound(exceptions.NotFound):
    default_detail = 'Not found.'
    default_code = 'not_found'


class PreconditionFailed(exceptions.APIException):
    """A state-machine guard rejected the transition."""
    status_code = status.HTTP_412_PRECONDITION_FAILED
    default_detail = 'This action is not allowed in the current state.'
    default_code = 'precondition_failed'


class ConflictError(exceptions.APIException):
    """Another actor won the race; the commit-time guard failed."""
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'This job is no longer available.'
    default_code = 'conflict'


class ImageHostError(exceptions.APIException):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = 'Image upload failed.'
    default_code = 'image_host_error'


def exception_handler(exc, context):
    """Render API errors as {"error": ..., "code": ...}."""
    response = drf_exception_handler(exc, context)
    if response is None:
        return None

    detail = getattr(exc, 'detail', response.data)
    if isinstance(detail, list) and len(detail) == 1 and isinstance(detail[0], str):
        error = str(detail[0])
    elif isinstance(detail, (dict, list)):
        error = response.data
    else:
        error = str(detail)

    code = getattr(exc, 'default_code', 'error')
    if isinstance(exc, exceptions.APIException):
        codes = exc.get_codes()
        if isinstance(codes, str):
            code = codes

    if response.status_code >= 500:
        logger.error(f"{exc.__class__.__name__}: {error}")
    response.data = {'error': error, 'code': code}
    return response
