"""Error taxonomy shared by every handler, and the FastAPI handlers that render it."""

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class LibraryError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "Internal"

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.error, "detail": self.message}
        body.update(self.extra)
        return body


class Unauthorized(LibraryError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "Unauthorized"


class Forbidden(LibraryError):
    status_code = status.HTTP_403_FORBIDDEN
    error = "Forbidden"

    def __init__(self, message: str = "Insufficient permissions", required: Optional[str] = None,
                 has: Optional[List[str]] = None, **extra: Any):
        super().__init__(message, **extra)
        self.required = required
        self.has = sorted(has or [])

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        if self.required is not None:
            body["required"] = self.required
            body["has"] = self.has
        return body


class NotFound(LibraryError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "NotFound"


class Conflict(LibraryError):
    status_code = status.HTTP_409_CONFLICT
    error = "Conflict"


class AlreadyReturned(Conflict):
    error = "AlreadyReturned"

    def __init__(self, message: str = "Book already returned", **extra: Any):
        super().__init__(message, **extra)


class InvalidInput(LibraryError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "InvalidInput"


class NoCopiesAvailable(InvalidInput):
    error = "NoCopiesAvailable"

    def __init__(self, message: str = "No available copies of this book", **extra: Any):
        super().__init__(message, **extra)


class Internal(LibraryError):
    pass


async def library_error_handler(request: Request, exc: LibraryError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.error, exc.message)
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Storage failure during %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=Internal("Internal server error").to_dict(),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LibraryError, library_error_handler)
    app.add_exception_handler(SQLAlchemyError, storage_error_handler)
