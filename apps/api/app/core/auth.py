from dataclasses import dataclass

from jose import JWTError, jwt
from starlette.requests import Request

from app.core.config import get_settings


@dataclass
class AuthUser:
    sub: str
    roles: list[str]


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""

    if not token:
        return AuthUser(sub="anonymous", roles=["guest"])

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return AuthUser(sub="anonymous", roles=["guest"])

    subject = str(payload.get("sub", "anonymous"))
    roles = payload.get("roles", [])
    if not isinstance(roles, list):
        roles = []
    organization_id = request.headers.get("x-organization-id")
    # Organization-scoped roles arrive as {"org_roles": {"<organization id>": ["accountant"]}}.
    org_roles = payload.get("org_roles")
    if organization_id and isinstance(org_roles, dict):
        scoped = org_roles.get(organization_id)
        if isinstance(scoped, list):
            roles = [*roles, *scoped]
    return AuthUser(sub=subject, roles=[str(role) for role in roles])
