from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping
from uuid import uuid4

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from attendance_engine.errors import ApiError
from attendance_engine.settings import get_settings

bearer_scheme = HTTPBearer(auto_error=False)

ROLE_EMPLOYEE = "employee"
ROLE_ADMIN = "admin"

ADMIN_PERMISSION_KEYS: tuple[str, ...] = (
    "presence",
    "absence",
    "auto_checkout",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def empty_permissions() -> dict[str, dict[str, bool]]:
    return {key: {"read": False, "write": False} for key in ADMIN_PERMISSION_KEYS}


def normalize_permissions(raw: Mapping[str, Any] | None) -> dict[str, dict[str, bool]]:
    normalized = empty_permissions()
    if not isinstance(raw, Mapping):
        return normalized

    for key, value in raw.items():
        if key not in normalized:
            continue
        if isinstance(value, Mapping):
            read = bool(value.get("read"))
            write = bool(value.get("write"))
        else:
            read = bool(value)
            write = bool(value)
        if write:
            read = True
        normalized[key] = {"read": read, "write": write}
    return normalized


def has_permission(claims: Mapping[str, Any], permission: str, *, write: bool = False) -> bool:
    if permission not in ADMIN_PERMISSION_KEYS:
        return False
    if claims.get("role") != ROLE_ADMIN:
        return False
    # Admin tokens without a permission map are tenant-wide admins.
    if claims.get("permissions") is None:
        return True

    permissions = normalize_permissions(claims.get("permissions"))  # type: ignore[arg-type]
    permission_value = permissions.get(permission)
    if not permission_value:
        return False
    if write:
        return bool(permission_value.get("write"))
    return bool(permission_value.get("read") or permission_value.get("write"))


def create_access_token(
    *,
    sub: str,
    tenant_id: int,
    role: str = ROLE_EMPLOYEE,
    employee_id: int | None = None,
    permissions: Mapping[str, Any] | None = None,
) -> tuple[str, int, dict[str, Any]]:
    settings = get_settings()
    now = _utcnow()
    exp = now + timedelta(minutes=settings.access_token_minutes)
    claims: dict[str, Any] = {
        "sub": sub,
        "role": role,
        "tenant_id": tenant_id,
        "employee_id": employee_id,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
        "jti": str(uuid4()),
        "typ": "access",
    }
    if permissions is not None:
        claims["permissions"] = normalize_permissions(permissions)
    token = jwt.encode(claims, settings.jwt_secret, algorithm="HS256")
    return token, settings.access_token_minutes * 60, claims


def _coerce_positive_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


def decode_token(token: str, *, expected_type: str = "access") -> dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_iat": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is invalid.") from exc

    if payload.get("typ") != expected_type:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token type is invalid.")

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.")

    tenant_id = _coerce_positive_int(payload.get("tenant_id"))
    if tenant_id is None:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token tenant is invalid.")
    payload["tenant_id"] = tenant_id
    return payload


def _require_claims(request: Request, credentials: HTTPAuthorizationCredentials | None) -> dict[str, Any]:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")
    payload = decode_token(credentials.credentials)
    request.state.tenant_id = payload["tenant_id"]
    return payload


def require_employee(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict[str, Any]:
    payload = _require_claims(request, credentials)
    if payload.get("role") != ROLE_EMPLOYEE:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")

    employee_id = _coerce_positive_int(payload.get("employee_id"))
    if employee_id is None:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token employee is invalid.")
    payload["employee_id"] = employee_id

    request.state.actor = ROLE_EMPLOYEE
    request.state.actor_id = str(employee_id)
    return payload


def require_admin(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict[str, Any]:
    payload = _require_claims(request, credentials)
    if payload.get("role") != ROLE_ADMIN:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")

    request.state.actor = ROLE_ADMIN
    request.state.actor_id = str(payload.get("sub") or ROLE_ADMIN)
    return payload


def require_admin_permission(permission: str, *, write: bool = False) -> Callable[..., dict[str, Any]]:
    if permission not in ADMIN_PERMISSION_KEYS:
        raise ValueError(f"Unknown admin permission: {permission}")

    def _dependency(claims: dict[str, Any] = Depends(require_admin)) -> dict[str, Any]:
        if not has_permission(claims, permission, write=write):
            raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")
        return claims

    return _dependency
