"""
Error taxonomy for portal operations.

Services raise these; the HTTP layer maps each one to a status code and an
``{"error": message}`` body.
"""
from typing import Optional


class PortalError(Exception):
    status_code = 500
    default_message = "Server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(PortalError):
    status_code = 404
    default_message = "Not found"


class AccessDenied(PortalError):
    status_code = 403
    default_message = "Access denied"


class ValidationError(PortalError):
    status_code = 400
    default_message = "Invalid input"


class StorageError(PortalError):
    status_code = 503
    default_message = "File storage unavailable"


class ConflictError(PortalError):
    status_code = 409
    default_message = "Conflict"


class InternalError(PortalError):
    status_code = 500
    default_message = "Server error"
