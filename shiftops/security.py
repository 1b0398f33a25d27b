from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from shiftops.errors import ApiError, ForbiddenError
from shiftops.settings import Settings, get_settings

bearer_scheme = HTTPBearer(auto_error=False)

ROLE_ADMIN = "admin"
ROLE_EMPLOYEE = "employee"
_KNOWN_ROLES = frozenset({ROLE_ADMIN, ROLE_EMPLOYEE})


@dataclass(frozen=True, slots=True)
class Actor:
    subject: str
    role: str
    employee_id: int | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def decode_token(token: str, *, settings: Settings | None = None) -> dict[str, Any]:
    settings = settings or get_settings()
    if not settings.jwt_secret:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token verification is not configured.")
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is invalid.") from exc


def actor_from_claims(claims: Mapping[str, Any]) -> Actor:
    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.")

    role = claims.get("role")
    if role not in _KNOWN_ROLES:
        raise ForbiddenError("Unknown role.")

    raw_employee_id = claims.get("employee_id")
    employee_id: int | None = None
    if raw_employee_id is not None:
        try:
            employee_id = int(raw_employee_id)
        except (TypeError, ValueError):
            raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token employee is invalid.") from None
    return Actor(subject=subject, role=str(role), employee_id=employee_id)


def require_actor(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Actor:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")

    actor = actor_from_claims(decode_token(credentials.credentials, settings=request.app.state.settings))
    request.state.actor = actor.role
    request.state.actor_id = actor.subject
    return actor


def require_employee(actor: Actor = Depends(require_actor)) -> Actor:
    if actor.employee_id is None:
        raise ForbiddenError("This action is only available to employees.")
    return actor


def require_admin(actor: Actor = Depends(require_actor)) -> Actor:
    if not actor.is_admin:
        raise ForbiddenError("Insufficient permissions.")
    return actor
