"""Custom exception classes for the access-control subsystem."""

from fastapi import HTTPException, status


class ERPAccessError(Exception):
    """Base exception for ERP Access."""

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class ResourceNotFoundError(ERPAccessError):
    """Raised when a requested role, permission or user is not found."""
    pass


class ResourceConflictError(ERPAccessError):
    """Raised when a resource already exists."""
    pass


class ValidationError(ERPAccessError):
    """Raised when input validation fails."""
    pass


class SystemRoleProtectedError(ERPAccessError):
    """Raised when a system role is about to be deleted."""

    def __init__(self, role_key: str):
        self.role_key = role_key
        super().__init__(f"System role '{role_key}' cannot be deleted")


class PersistenceError(ERPAccessError):
    """Raised when the underlying store rejects a role/permission write.

    The message is meant for users; the store error is chained as __cause__.
    """
    pass


# HTTP exception shortcuts
def not_found(detail: str = "Resource not found") -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


def forbidden(detail: str = "Insufficient permissions") -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def bad_request(detail: str = "Bad request") -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def unauthorized(detail: str = "Not authenticated") -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def conflict(detail: str = "Resource already exists") -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)


def to_http_exception(exc: ERPAccessError) -> HTTPException:
    """Translate a service error into the response the request seam sends."""
    if isinstance(exc, ResourceNotFoundError):
        return not_found(exc.message)
    if isinstance(exc, ResourceConflictError):
        return conflict(exc.message)
    if isinstance(exc, SystemRoleProtectedError):
        return forbidden(exc.message)
    if isinstance(exc, ValidationError):
        return bad_request(exc.message)
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.message)
