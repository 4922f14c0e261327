from fastapi import HTTPException, status
from typing import Any, Dict, Optional

from quicklab_backend.repositories.base import (
    DuplicateError,
    InsufficientSelectorError,
    NotFoundError,
    RepositoryError,
)

class NotFoundException(HTTPException):
    def __init__(self,detail: Any = None, headers: Optional[Dict[str, str]] = None):
        self.headers = headers
        self.status_code = status.HTTP_404_NOT_FOUND
        self.detail = detail or "Not found"

class BadRequestException(HTTPException):
    def __init__(self,detail: Any = None, headers: Optional[Dict[str, str]] = None):
        self.headers = headers
        self.status_code = status.HTTP_400_BAD_REQUEST
        self.detail = detail or "Bad request"

class ConflictException(HTTPException):
    def __init__(self,detail: Any = None, headers: Optional[Dict[str, str]] = None):
        self.headers = headers
        self.status_code = status.HTTP_409_CONFLICT
        self.detail = detail or "Conflict"

class InternalServerException(HTTPException):
    def __init__(self,detail: Any = None, headers: Optional[Dict[str, str]] = None):
        self.headers = headers
        self.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        self.detail = detail or "Internal server error"

class BadGatewayException(HTTPException):
    def __init__(self,detail: Any = None, headers: Optional[Dict[str, str]] = None):
        self.headers = headers
        self.status_code = status.HTTP_502_BAD_GATEWAY
        self.detail = detail or "Bad gateway"

def repository_error_to_http_exception(error: RepositoryError) -> HTTPException:
    if isinstance(error, NotFoundError):
        return NotFoundException(detail=str(error))
    elif isinstance(error, DuplicateError):
        return ConflictException(detail=str(error))
    elif isinstance(error, InsufficientSelectorError):
        return BadRequestException(detail=str(error))
    else:
        return InternalServerException(detail=str(error))
