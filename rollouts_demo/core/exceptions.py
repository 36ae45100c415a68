from http import HTTPStatus


class ServerException(Exception):
    """Server Exception"""


class ImproperlyConfigured(ServerException):
    """Improperly Configured"""


class ListenError(ServerException):
    """Could not bind the listen address"""


class ShutdownTimeoutError(ServerException):
    """Graceful shutdown did not complete in time"""


class HTTPException(ServerException):
    """HTTP Exception"""
    status: HTTPStatus


class BadRequest(HTTPException):
    """Bad Request"""
    status = HTTPStatus.BAD_REQUEST
