"""
Application error taxonomy.

Every handler-facing failure is one of these; ``main.py`` maps them to a JSON
body ``{"error": ..., "code": ...}`` with the matching HTTP status.
"""
from typing import Any, Dict, Optional


class AppError(Exception):
    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(AppError):
    """Missing or malformed request fields"""
    status_code = 400
    code = "validation_error"


class AuthError(AppError):
    """Missing or invalid session"""
    status_code = 401
    code = "auth_error"


class ForbiddenError(AuthError):
    status_code = 403
    code = "forbidden"


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"


class ConflictError(AppError):
    """The order is not in the state the operation requires"""
    status_code = 409
    code = "conflict"


class UpstreamError(AppError):
    """FreeAgent, email or storage provider failure"""
    status_code = 502
    code = "upstream_error"


class ReconnectRequiredError(UpstreamError):
    """FreeAgent credentials are missing or can no longer be refreshed"""
    status_code = 503
    code = "reconnect_required"


class FreeAgentAPIError(UpstreamError):
    def __init__(self, message: str, remote_status: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.remote_status = remote_status
        self.data = data


class MirrorSyncError(UpstreamError):
    """Local record saved but the FreeAgent copy could not be created"""
    code = "mirror_sync_failed"


class EmailDeliveryError(UpstreamError):
    pass


class StorageError(UpstreamError):
    pass


class PersistenceError(AppError):
    """Local database failure"""
    status_code = 500
    code = "persistence_error"
