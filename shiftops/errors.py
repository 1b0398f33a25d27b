from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class ValidationError(ApiError):
    def __init__(self, message: str = "Request is missing a required value.", *, code: str = "VALIDATION_ERROR"):
        super().__init__(status_code=422, code=code, message=message)


class NotFoundError(ApiError):
    def __init__(self, message: str = "Record not found.", *, code: str = "NOT_FOUND"):
        super().__init__(status_code=404, code=code, message=message)


class ForbiddenError(ApiError):
    def __init__(self, message: str = "You are not allowed to change this record.", *, code: str = "FORBIDDEN"):
        super().__init__(status_code=403, code=code, message=message)


class AlreadyOpenError(ApiError):
    def __init__(self, message: str = "You are already clocked in."):
        super().__init__(status_code=409, code="ALREADY_CLOCKED_IN", message=message)


class AlreadyClosedError(ApiError):
    def __init__(self, message: str = "This shift has already been clocked out."):
        super().__init__(status_code=409, code="ALREADY_CLOCKED_OUT", message=message)


class InvalidTransitionError(ApiError):
    def __init__(self, message: str = "Schedule status does not allow this action."):
        super().__init__(status_code=409, code="INVALID_TRANSITION", message=message)


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
