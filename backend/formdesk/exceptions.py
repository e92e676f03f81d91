"""
Error taxonomy.

Services raise these; FastAPI renders them like any HTTPException, so the
HTTP boundary is the only place they turn into status codes.
"""
from typing import Dict, Optional

from fastapi import HTTPException, status


class FormdeskError(HTTPException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Internal server error"

    def __init__(self, detail: Optional[str] = None, headers: Optional[Dict[str, str]] = None):
        super().__init__(
            status_code=self.status_code,
            detail=detail or self.default_detail,
            headers=headers,
        )


class Unauthorized(FormdeskError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Not authenticated"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail, headers={"WWW-Authenticate": "Bearer"})


class Forbidden(FormdeskError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Not authorized to access this resource"


class NotFound(FormdeskError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found"


class BadRequest(FormdeskError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Bad request"


class ValidationError(FormdeskError):
    """Raised when submitted values fail required/type/size/extension checks.

    ``errors`` maps a field id (or ``"form"``) to a human-readable message.
    """
    status_code = 422
    default_detail = "Validation failed"

    def __init__(self, errors: Dict[str, str], message: Optional[str] = None):
        self.errors = dict(errors)
        HTTPException.__init__(
            self,
            status_code=self.status_code,
            detail={"message": message or self.default_detail, "errors": self.errors},
        )


class InternalError(FormdeskError):
    default_detail = "Internal server error"
