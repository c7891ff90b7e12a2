from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details or {}


class DuplicateOpenSession(ApiError):
    """The employee already has an open session; callers should fetch it instead of retrying."""

    def __init__(self, open_session_id: int | None):
        super().__init__(
            status_code=409,
            code="DUPLICATE_OPEN_SESSION",
            message="An open attendance session already exists. Check out first.",
            details={"open_session_id": open_session_id},
        )
        self.open_session_id = open_session_id


class DaySessionExists(ApiError):
    def __init__(self, session_id: int):
        super().__init__(
            status_code=409,
            code="DAY_SESSION_EXISTS",
            message="An attendance session was already recorded for this day.",
            details={"session_id": session_id},
        )
        self.session_id = session_id


class SessionNotFound(ApiError):
    def __init__(self) -> None:
        super().__init__(
            status_code=404,
            code="SESSION_NOT_FOUND",
            message="Attendance session not found.",
        )


class SessionClosed(ApiError):
    def __init__(self, session_id: int):
        super().__init__(
            status_code=409,
            code="SESSION_CLOSED",
            message="Attendance session is already closed.",
            details={"session_id": session_id},
        )


class EmployeeNotFound(ApiError):
    def __init__(self) -> None:
        super().__init__(
            status_code=404,
            code="EMPLOYEE_NOT_FOUND",
            message="Employee not found.",
        )


class EmployeeInactive(ApiError):
    def __init__(self) -> None:
        super().__init__(
            status_code=403,
            code="EMPLOYEE_INACTIVE",
            message="Inactive employee cannot perform attendance actions.",
        )


class Busy(ApiError):
    def __init__(self) -> None:
        super().__init__(
            status_code=503,
            code="BUSY",
            message="Another attendance operation is in progress for this employee. Retry shortly.",
        )


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
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    payload: dict[str, Any] = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    if details:
        payload["error"]["details"] = details
    return JSONResponse(status_code=status_code, content=payload)
