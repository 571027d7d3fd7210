from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    kind = "internal"

    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class NotFoundError(ApiError):
    kind = "not_found"

    def __init__(self, code: str, message: str):
        super().__init__(status_code=404, code=code, message=message)


class ConflictError(ApiError):
    kind = "conflict"

    def __init__(self, code: str, message: str):
        super().__init__(status_code=409, code=code, message=message)


class InputValidationError(ApiError):
    kind = "validation"

    def __init__(self, code: str, message: str):
        super().__init__(status_code=422, code=code, message=message)


class AuthorizationError(ApiError):
    kind = "authorization"

    def __init__(self, code: str, message: str, *, status_code: int = 403):
        super().__init__(status_code=status_code, code=code, message=message)


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    kind: str = "internal",
) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "kind": kind,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
