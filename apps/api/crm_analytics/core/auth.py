from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from jose import JWTError, jwt
from starlette.requests import Request

from crm_analytics.core.config import get_settings

ANONYMOUS_SUB = "anonymous"
DEFAULT_ROLES = ("rep",)


@dataclass(frozen=True)
class AuthUser:
    sub: str
    roles: list[str] = field(default_factory=list)

    @property
    def is_anonymous(self) -> bool:
        return self.sub == ANONYMOUS_SUB

    @classmethod
    def anonymous(cls) -> AuthUser:
        return cls(sub=ANONYMOUS_SUB, roles=["guest"])

    @classmethod
    def from_claims(cls, claims: Mapping[str, Any]) -> AuthUser:
        subject = claims.get("sub")
        if not subject:
            return cls.anonymous()
        roles = claims.get("roles")
        if not isinstance(roles, list):
            roles = list(DEFAULT_ROLES)
        return cls(sub=str(subject), roles=[str(role) for role in roles])


def _bearer_token(request: Request) -> str | None:
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_user(request: Request) -> AuthUser:
    """Caller identity from an HS256 bearer token; missing or invalid tokens are anonymous."""
    token = _bearer_token(request)
    if token is None:
        return AuthUser.anonymous()

    settings = get_settings()
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return AuthUser.anonymous()
    return AuthUser.from_claims(claims)
