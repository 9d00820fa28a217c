"""Error taxonomy shared by both services and the handlers that render it.

Every error leaves a request as JSON ``{"error": <message>, ...}``.
"""
import logging
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

SERVER_ERROR_MSG = "Server error. Please try again later."


class AppError(Exception):
    status_code = 500

    def __init__(self, message, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def body(self):
        return {"error": self.message, **self.extra}

class NotFound(AppError):
    status_code = 404

class Unauthorized(AppError):
    status_code = 401

class Forbidden(AppError):
    status_code = 403

class Conflict(AppError):
    status_code = 409

class ValidationError(AppError):
    status_code = 400

class IncompleteUpload(ValidationError):
    def __init__(self, received, expected):
        super().__init__("Missing chunks", received=received, expected=expected)
        self.received = received
        self.expected = expected

class UpstreamError(AppError):
    status_code = 502


def register_error_handlers(app: FastAPI):
    """Install JSON error rendering on an app."""

    @app.exception_handler(AppError)
    async def _app_error(request: Request, exc: AppError):
        return JSONResponse(status_code=exc.status_code, content=exc.body())

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404 and exc.detail == "Not Found":
            msg = f"Requested resource {request.url.path} does not exist"
        else:
            msg = str(exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"error": msg}, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        msg = f"Invalid input: {field} {first.get('msg', '')}".strip()
        return JSONResponse(status_code=400, content={"error": msg})

    @app.exception_handler(Exception)
    async def _server_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": SERVER_ERROR_MSG})
