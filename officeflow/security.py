from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from officeflow.errors import AuthorizationError
from officeflow.settings import get_settings

bearer_scheme = HTTPBearer(auto_error=False)

ROLE_EMPLOYEE = "employee"
ROLE_SUPERVISOR = "supervisor"
ROLE_ADMIN = "admin"
KNOWN_ROLES = frozenset({ROLE_EMPLOYEE, ROLE_SUPERVISOR, ROLE_ADMIN})
SUPERVISORY_ROLES = frozenset({ROLE_SUPERVISOR, ROLE_ADMIN})


@dataclass(frozen=True, slots=True)
class CallerContext:
    """Authenticated caller handed to the attendance core by the HTTP layer."""

    subject: str
    role: str
    name: str | None = None

    @property
    def is_supervisor(self) -> bool:
        return self.role in SUPERVISORY_ROLES


def _invalid_token(message: str) -> AuthorizationError:
    return AuthorizationError(code="INVALID_TOKEN", message=message, status_code=401)


def decode_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_exp": True},
        )
    except JWTError as exc:
        raise _invalid_token("Token is invalid.") from exc

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise _invalid_token("Token subject is invalid.")

    role = payload.get("role")
    if role not in KNOWN_ROLES:
        raise AuthorizationError(code="FORBIDDEN", message="Unknown caller role.")
    return payload


def get_caller(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> CallerContext:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise _invalid_token("Missing bearer token.")

    payload = decode_token(credentials.credentials)
    caller = CallerContext(
        subject=str(payload["sub"]),
        role=str(payload["role"]),
        name=payload.get("name"),
    )
    request.state.actor = caller.role
    request.state.actor_id = caller.subject
    return caller


def require_supervisor(caller: CallerContext = Depends(get_caller)) -> CallerContext:
    if not caller.is_supervisor:
        raise AuthorizationError(code="FORBIDDEN", message="Supervisor role required.")
    return caller
