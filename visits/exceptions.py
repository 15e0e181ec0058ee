"""
Queue error taxonomy and the unified API exception handler.

Service functions raise these; DRF renders them through
:func:`api_exception_handler` as ``{'ok': False, 'error': {...}}``.
"""
import logging

from rest_framework import status
from rest_framework.exceptions import APIException, ValidationError as DRFValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)


class QueueError(APIException):
    """Base class for failures reported by the queue lifecycle manager."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = 'queue_error'
    default_detail = 'Queue operation failed.'


class NotFound(QueueError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = 'not_found'
    default_detail = 'Queue entry not found.'


class Conflict(QueueError):
    """The entry changed under us: another staff action won the race."""
    status_code = status.HTTP_409_CONFLICT
    default_code = 'conflict'
    default_detail = 'Queue entry was modified concurrently.'


class InvalidOperation(QueueError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_code = 'invalid_operation'
    default_detail = 'Operation not allowed in the current state.'


class EmptyQueue(QueueError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = 'empty_queue'
    default_detail = 'No patients waiting in queue.'


class ValidationError(QueueError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = 'validation_error'
    default_detail = 'Invalid input.'


class TerminalStateViolation(QueueError):
    status_code = status.HTTP_409_CONFLICT
    default_code = 'terminal_state'
    default_detail = 'Queue entry is already in a terminal state.'


class StoreUnavailable(QueueError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_code = 'store_unavailable'
    default_detail = 'Queue store is unavailable, retry later.'


def api_exception_handler(exc, context):
    resp = drf_exception_handler(exc, context)
    if resp is None:
        logger.exception("Unhandled API error", exc_info=exc)
        return Response({'ok': False, 'error': {'code': 'server_error', 'message': str(exc)}}, status=500)
    # normalize response
    if isinstance(exc, QueueError):
        code = exc.default_code
    elif isinstance(exc, DRFValidationError):
        code = 'validation_error'
    else:
        code = 'api_error'
    if isinstance(resp.data, dict):
        detail = resp.data.get('detail') or resp.data
    else:
        detail = resp.data if isinstance(resp.data, list) else str(resp.data)
    resp.data = {'ok': False, 'error': {'code': code, 'message': detail}}
    if isinstance(exc, StoreUnavailable):
        resp['Retry-After'] = '5'
    return resp
