from __future__ import annotations

from dataclasses import dataclass, field

from jose import JWTError, jwt
from starlette.requests import Request

from distro_crm.core.config import get_settings

METRICS_READ_ROLE = "system.metrics.read"


@dataclass
class AuthUser:
    sub: str
    roles: list[str] = field(default_factory=list)

    def has_role(self, role: str) -> bool:
        return role in self.roles


def anonymous_user() -> AuthUser:
    return AuthUser(sub="anonymous", roles=["guest"])


def _bearer_token(request: Request) -> str | None:
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _roles_claim(claims: dict) -> list[str]:
    roles = claims.get("roles")
    if not isinstance(roles, list):
        return ["user"]
    return [str(role) for role in roles]


async def get_current_user(request: Request) -> AuthUser:
    """Identify the caller from an optional HS-signed bearer token.

    A missing or invalid token yields the anonymous guest; CRM writes are
    attributed to ``sub`` in audit entries and event envelopes.
    """
    token = _bearer_token(request)
    if token is None:
        return anonymous_user()

    settings = get_settings()
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return anonymous_user()

    user = AuthUser(sub=str(claims.get("sub") or "anonymous"), roles=_roles_claim(claims))
    request.state.user_id = user.sub
    return user
