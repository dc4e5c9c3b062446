from typing import Any, Optional

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def get_request_id(request: Optional[Request]) -> str:
    if request is None:
        return ""
    return getattr(request.state, "request_id", "") or request.headers.get("X-Request-ID", "")


def envelope(request: Optional[Request], data: Any = None) -> dict:
    """Wrap a successful payload in the standard response envelope"""
    return {
        "success": True,
        "data": data,
        "meta": {"request_id": get_request_id(request)},
    }


def error_envelope(request: Optional[Request], error: dict) -> dict:
    return {
        "success": False,
        "error": error,
        "meta": {"request_id": get_request_id(request)},
    }


def json_response(request: Optional[Request], data: Any = None, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=jsonable_encoder(envelope(request, data)))
