"""JSON error bodies shared by the router layers."""

from fastapi import Request
from fastapi.responses import JSONResponse


def error_response(
    status_code: int,
    error: str,
    message: str,
    path: str,
    request_id: str | None = None,
) -> JSONResponse:
    """Build a `{error, message, path}` body, plus request_id when known."""
    error_data = {"error": error, "message": message, "path": path}
    if request_id:
        error_data["request_id"] = request_id
    return JSONResponse(error_data, status_code=status_code)


def internal_error_response(request: Request) -> JSONResponse:
    return error_response(
        500,
        "Internal Server Error",
        "The server failed to handle this request",
        request.url.path,
        getattr(request.state, "request_id", None),
    )
