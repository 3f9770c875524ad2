from rest_framework import status
from rest_framework.exceptions import APIException, PermissionDenied
from rest_framework.views import exception_handler as drf_exception_handler
from rest_framework.response import Response


class AuthorizationError(PermissionDenied):
    """Principal is not entitled to the requested identity or policy."""
    default_detail = 'Not permitted for this identity'
    default_code = 'not_permitted'


class IndexStoreFailure(APIException):
    """The central index could not be read or updated."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'Patient index unavailable, try again later'
    default_code = 'index_unavailable'


class AuditStoreFailure(APIException):
    """Raised only when audit writes are configured to fail closed."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = 'Audit log unavailable, try again later'
    default_code = 'audit_unavailable'


class RecordCreateFailure(APIException):
    """The owning hospital node rejected or never answered a write."""
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = 'Hospital node could not store the record'
    default_code = 'node_unavailable'


class NodeError(Exception):
    """Base class for hospital node failures; never leaves the node client."""


class NodeUnreachable(NodeError):
    pass


class NodeTimeout(NodeError):
    pass


class MalformedNodeResponse(NodeError):
    pass


def api_exception_handler(exc, context):
    resp = drf_exception_handler(exc, context)
    if resp is None:
        return Response({'ok': False, 'error': {'code': 'server_error', 'message': str(exc)}}, status=500)
    # normalize response
    code = getattr(exc, 'default_code', None) or 'api_error'
    if isinstance(resp.data, dict):
        detail = resp.data.get('detail') or resp.data
    else:
        detail = str(resp.data)
    out = Response({'ok': False, 'error': {'code': code, 'message': detail}}, status=resp.status_code)
    if resp.has_header('Retry-After'):
        out['Retry-After'] = resp['Retry-After']
    return out
