from typing import Any, Optional

from fastapi.responses import JSONResponse


def success_response(data: Any = None, message: str = "OK", status: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content={
            "ok": True,
            "data": data or {},
            "error": None,
            "message": message,
        }
    )


def error_response(error_code: str, status: int = 400, message: str = "An error occurred", data: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content={
            "ok": False,
            "data": data or {},
            "error": error_code,
            "message": message,
        }
    )


def service_response(result: dict) -> JSONResponse:
    """Turn a normalized service result ({"data"|"error", "is_error"}) into an HTTP response."""
    if result.get("is_error"):
        error = result.get("error", "Unknown error")
        return error_response(error, status=result.get("status", 400), message=error)
    return success_response(result.get("data"))
