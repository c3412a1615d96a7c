import logging

from fastapi.exceptions import RequestValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse

from stash_adduser.protocol import ResultCode
from stash_adduser.services.errors import (
    AuthenticationException,
    AuthorizationException,
    ConfigurationException,
    IntegrityException,
    LockUnavailableException,
    NotFoundException,
    PasswordSetException,
    StashException,
    StoreUnreadableException,
    StoreUnwritableException,
    UserExistsException,
)

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    UserExistsException: (409, ResultCode.USER_EXISTS),
    IntegrityException: (409, ResultCode.INVALID_REQUEST),
    NotFoundException: (404, ResultCode.USER_NOT_FOUND),
    AuthenticationException: (401, ResultCode.AUTH_FAILED),
    AuthorizationException: (403, ResultCode.NOT_ADMIN),
    LockUnavailableException: (503, ResultCode.STORE_UNAVAILABLE),
    StoreUnreadableException: (503, ResultCode.STORE_UNAVAILABLE),
    StoreUnwritableException: (503, ResultCode.STORE_UNAVAILABLE),
    PasswordSetException: (500, ResultCode.SERVER_ERROR),
    ConfigurationException: (500, ResultCode.SERVER_ERROR),
}


def _status_for(exc: Exception) -> tuple[int, ResultCode]:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500, ResultCode.SERVER_ERROR


def error_body(code: ResultCode, detail: str) -> dict:
    return {"code": int(code), "detail": detail}


def _exception_handler(request: Request, exc: Exception):
    status_code, code = _status_for(exc)
    if status_code >= 500:
        logger.exception("%s %s failed with %d: %s", request.method, request.url.path, status_code, exc, exc_info=exc)
    else:
        logger.warning("%s %s rejected with %d: %s", request.method, request.url.path, status_code, exc)
    headers = {"WWW-Authenticate": "Basic"} if status_code == 401 else None
    return JSONResponse(error_body(code, str(exc)), status_code=status_code, headers=headers)


def _validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(error_body(ResultCode.INVALID_REQUEST, str(exc)), status_code=422)


def register_exception_handlers(app):
    app.exception_handler(StashException)(_exception_handler)
    app.exception_handler(RequestValidationError)(_validation_handler)
