from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from utils.logger import get_logger

logger = get_logger(__name__)

INVALID_JSON = "INVALID_JSON"
INVALID_REQUEST = "INVALID_REQUEST"
MISSING_MESSAGE = "MISSING_MESSAGE"


class ApiError(Exception):
    """An error that maps directly onto an HTTP response."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
        details: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details

    @classmethod
    def bad_request(cls, message: str, code: Optional[str] = None, details: Any = None) -> "ApiError":
        return cls(message, 400, code, details)

    @classmethod
    def internal(cls, message: str = "Internal server error", code: Optional[str] = None, details: Any = None) -> "ApiError":
        return cls(message, 500, code, details)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        if self.code:
            body["code"] = self.code
        if self.details is not None:
            body["details"] = self.details
        return body


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.warning
        log("api_error", path=request.url.path, status=exc.status_code, code=exc.code, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.error("api_unhandled_error", path=request.url.path, error=str(exc), exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})
