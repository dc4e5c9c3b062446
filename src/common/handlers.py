import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from src.common import errors
from src.common.errors import AppError, log_app_error
from src.common.responses import error_envelope, get_request_id

logger = logging.getLogger(__name__)

_HTTP_CODES = {
    400: errors.INVALID_INPUT,
    401: errors.UNAUTHORIZED,
    403: errors.FORBIDDEN,
    404: errors.NOT_FOUND,
    405: errors.NOT_FOUND,
    409: errors.CONFLICT,
    429: errors.RATE_LIMIT_EXCEEDED,
}


def error_response(request: Request, err: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=err.status_code,
        content=jsonable_encoder(error_envelope(request, err.to_dict())),
    )


async def app_error_handler(request: Request, exc: AppError):
    log_app_error(exc, get_request_id(request))
    return error_response(request, exc)


async def http_exception_handler(request: Request, exc: HTTPException):
    template = _HTTP_CODES.get(exc.status_code, errors.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else template.message
    err = AppError(template.code, exc.status_code, message)
    response = error_response(request, err)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    fields = []
    for item in exc.errors():
        fields.append({
            "field": ".".join(str(part) for part in item.get("loc", ()) if part != "body"),
            "message": item.get("msg", ""),
        })
    if any(item.get("type") == "missing" and tuple(item.get("loc", ())) == ("body",) for item in exc.errors()):
        err = errors.MISSING_REQUEST_BODY()
    elif any(item.get("type") == "json_invalid" for item in exc.errors()):
        err = errors.INVALID_JSON()
    else:
        err = errors.UNPROCESSABLE_ENTITY(fields=fields)
    return error_response(request, err)


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(
        "unhandled error request_id=%s method=%s path=%s",
        get_request_id(request), request.method, request.url.path,
    )
    return error_response(request, errors.INTERNAL_ERROR())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
