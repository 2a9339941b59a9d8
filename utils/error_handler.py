# utils/error_handler.py
import logging
import functools
import time
import uuid
from contextvars import ContextVar
from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from typing import Dict, Any, Callable, Optional, Awaitable, TypeVar

logger = logging.getLogger("kafka_gateway")

T = TypeVar('T')

class BaseError(Exception):
    """Base class for all application exceptions"""
    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str = "An unexpected error occurred", details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

class ConfigurationError(BaseError):
    """Invalid or unknown configuration value"""
    status_code = 400
    error_code = "CONFIGURATION_ERROR"

class KafkaError(BaseError):
    """Error raised by the Kafka client while connecting or publishing"""
    status_code = 503
    error_code = "KAFKA_ERROR"

class ValidationError(BaseError):
    """Error related to data validation"""
    status_code = 400
    error_code = "VALIDATION_ERROR"

class RequestContext:
    """Request ID and start time of one inbound request"""

    def __init__(self, request_id: Optional[str] = None):
        self.request_id = request_id or str(uuid.uuid4())
        self.start_time = time.time()

    @property
    def elapsed_time(self) -> float:
        return time.time() - self.start_time

# Each request (and the tasks and threads it spawns) sees its own context
_current_request: ContextVar[Optional[RequestContext]] = ContextVar("current_request", default=None)

def current_request_id() -> Optional[str]:
    """Request ID of the request being handled, None outside of a request"""
    context = _current_request.get()
    return context.request_id if context else None

def handle_exceptions(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """
    Decorator for async endpoints.

    Application errors are logged with the request ID and re-raised for the
    exception handlers; anything else becomes a BaseError (HTTP 500).
    """
    @functools.wraps(func)
    async def wrapper(*args, **kwargs) -> T:
        try:
            return await func(*args, **kwargs)
        except BaseError as e:
            logger.error(
                f"Error [{e.error_code}] - Request ID: {current_request_id()}: {e.message}",
                extra={"request_id": current_request_id(), "details": e.details}
            )
            raise
        except Exception as e:
            logger.error(
                f"Unexpected error - Request ID: {current_request_id()}: {str(e)}",
                exc_info=True,
                extra={"request_id": current_request_id()}
            )
            raise BaseError(message=str(e), details={"type": type(e).__name__}) from e

    return wrapper

async def request_middleware(request: Request, call_next: Callable):
    """Assign a request ID, log the request and its outcome, echo the ID back"""
    context = RequestContext(request.headers.get("X-Request-ID"))
    token = _current_request.set(context)

    logger.info(
        f"Request {request.method} {request.url.path} - ID: {context.request_id}",
        extra={"request_id": context.request_id}
    )

    try:
        response = await call_next(request)

        logger.info(
            f"Response {response.status_code} - Time: {context.elapsed_time:.3f}s - ID: {context.request_id}",
            extra={"request_id": context.request_id}
        )
        response.headers["X-Request-ID"] = context.request_id
        return response
    except Exception:
        logger.error(f"Request failed - ID: {context.request_id}", exc_info=True)
        raise
    finally:
        _current_request.reset(token)

def error_response(status_code: int, code: str, message: str, details: Optional[Dict[str, Any]] = None) -> JSONResponse:
    content = {
        "error": True,
        "code": code,
        "message": message,
        "request_id": current_request_id(),
    }
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)

async def exception_handler(request: Request, exc: BaseError):
    """Render any BaseError subclass with its own status and error code"""
    return error_response(exc.status_code, exc.error_code, exc.message, exc.details)

def register_exception_handlers(app):
    # Subclasses of BaseError resolve to this handler through their MRO
    app.add_exception_handler(BaseError, exception_handler)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        # Body errors can carry the offending input, which is not always JSON friendly
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
            for err in exc.errors()
        ]
        return error_response(
            ValidationError.status_code,
            ValidationError.error_code,
            "Invalid request payload",
            {"errors": errors}
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return error_response(exc.status_code, "HTTP_ERROR", str(exc.detail))

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception - ID: {current_request_id()}", exc_info=True)
        return error_response(500, "INTERNAL_ERROR", "An unexpected error occurred")
