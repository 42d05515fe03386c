from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.exceptions import RequestValidationError, ResponseValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

logger = logging.getLogger(__name__)


class LibraryException(Exception):
    """Base exception for library-related errors."""

    status_code = 400


class BookNotFoundError(LibraryException):
    status_code = 404

    def __init__(self, book_id: str):
        self.book_id = book_id
        super().__init__(f"Book with ID {book_id} not found")


class BookNotAvailableError(LibraryException):
    def __init__(self, book_id: str):
        self.book_id = book_id
        super().__init__(f"Book with ID {book_id} is not available for borrowing")


class BorrowConflictError(LibraryException):
    """Raised when the borrower already holds a record for the same book."""

    def __init__(self, email: str, book_id: str):
        self.email = email
        self.book_id = book_id
        super().__init__("You have already borrowed this book.")


class InvalidIdError(LibraryException):
    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Invalid ID format: {value}")


class InvalidBookDataError(LibraryException):
    def __init__(self, message: str):
        super().__init__(f"Invalid book data: {message}")


class AuthError(LibraryException):
    status_code = 401

    def __init__(self, reason: str = "missing token"):
        self.reason = reason
        super().__init__("unauthorized access")


class DatabaseError(LibraryException):
    status_code = 500

    def __init__(self, operation: str, details: str):
        super().__init__(f"Database error during {operation}: {details}")


INTERNAL_ERROR = {"message": "Internal server error"}


def _where(request: Request) -> str:
    return f"{request.method} {request.url.path}"


def _error_fields(exc: RequestValidationError) -> list:
    return [".".join(str(part) for part in error["loc"]) for error in exc.errors()]


# Exception handlers
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.info(f"{_where(request)} -> {exc.status_code}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    fields = _error_fields(exc)
    logger.warning(f"{_where(request)} rejected, invalid fields: {fields}")
    return JSONResponse(
        status_code=422,
        content={"detail": "Invalid book or borrow request", "fields": fields},
    )


async def response_validation_exception_handler(
    request: Request, exc: ResponseValidationError
):
    logger.error(f"{_where(request)} produced a malformed document: {exc.errors()}")
    return JSONResponse(status_code=500, content=INTERNAL_ERROR)


async def general_exception_handler(request: Request, exc: Exception):
    logger.exception(f"{_where(request)} failed: {exc}")
    return JSONResponse(status_code=500, content=INTERNAL_ERROR)


async def auth_exception_handler(request: Request, exc: AuthError):
    logger.warning(f"Rejected {_where(request)}: {exc.reason}")
    return JSONResponse(status_code=401, content={"message": str(exc)})


async def borrow_conflict_exception_handler(request: Request, exc: BorrowConflictError):
    logger.warning(f"Duplicate borrow: {exc.email} already holds {exc.book_id}")
    return PlainTextResponse(status_code=400, content=str(exc))


async def database_exception_handler(request: Request, exc: DatabaseError):
    logger.error(f"{_where(request)}: {exc}")
    return JSONResponse(status_code=500, content=INTERNAL_ERROR)


async def library_exception_handler(request: Request, exc: LibraryException):
    logger.warning(f"{_where(request)}: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc)},
    )


def add_exception_handlers(app: FastAPI):
    handlers = {
        StarletteHTTPException: http_exception_handler,
        RequestValidationError: validation_exception_handler,
        ResponseValidationError: response_validation_exception_handler,
        Exception: general_exception_handler,
        LibraryException: library_exception_handler,
        AuthError: auth_exception_handler,
        BorrowConflictError: borrow_conflict_exception_handler,
        DatabaseError: database_exception_handler,
    }
    for exc_class, handler in handlers.items():
        app.add_exception_handler(exc_class, handler)
