"""Result codes exchanged between the admin service and its clients."""

from __future__ import annotations

from enum import IntEnum


class ResultCode(IntEnum):
    OK = 0x0000
    CONNECT_FAILED = 0x0101
    TIMEOUT = 0x0102
    NO_SERVERS = 0x0103
    AUTH_FAILED = 0x0201
    NOT_ADMIN = 0x0202
    USER_EXISTS = 0x0301
    USER_NOT_FOUND = 0x0302
    INVALID_REQUEST = 0x0401
    STORE_UNAVAILABLE = 0x0501
    SERVER_ERROR = 0x0502
    PROTOCOL_ERROR = 0x0601


_ERROR_TEXT = {
    ResultCode.OK: "No error",
    ResultCode.CONNECT_FAILED: "Unable to connect to server",
    ResultCode.TIMEOUT: "Timed out waiting for server",
    ResultCode.NO_SERVERS: "No servers have been configured",
    ResultCode.AUTH_FAILED: "Authentication failed",
    ResultCode.NOT_ADMIN: "Authority does not have admin privileges",
    ResultCode.USER_EXISTS: "Username already exists",
    ResultCode.USER_NOT_FOUND: "User not found",
    ResultCode.INVALID_REQUEST: "Invalid request",
    ResultCode.STORE_UNAVAILABLE: "Store is unavailable",
    ResultCode.SERVER_ERROR: "Internal server error",
    ResultCode.PROTOCOL_ERROR: "Unexpected response from server",
}

# Used when an error body carries no code of its own.
STATUS_CODES = {
    400: ResultCode.INVALID_REQUEST,
    401: ResultCode.AUTH_FAILED,
    403: ResultCode.NOT_ADMIN,
    404: ResultCode.USER_NOT_FOUND,
    409: ResultCode.USER_EXISTS,
    422: ResultCode.INVALID_REQUEST,
    503: ResultCode.STORE_UNAVAILABLE,
}


def err_text(code: int) -> str:
    try:
        return _ERROR_TEXT[ResultCode(code)]
    except ValueError:
        return f"Unknown error {code:04X}"


def format_code(code: int) -> str:
    return f"{code:04X}:{err_text(code)}"


def code_for_status(status_code: int) -> ResultCode:
    if status_code >= 500 and status_code not in STATUS_CODES:
        return ResultCode.SERVER_ERROR
    return STATUS_CODES.get(status_code, ResultCode.PROTOCOL_ERROR)
