"""
Bearer token verification for the external auth provider.

Sign-up, sign-in and sessions live in the auth provider. This service only
verifies the signed token and uses the `sub` claim as the stable user id.
"""

from datetime import datetime, timedelta, timezone

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from boxoffice.core.config import get_settings
from boxoffice.core.logging import get_logger

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_minutes: int = 30) -> str:
    """Mint a token the way the auth provider does (used by tests and tooling)."""
    settings = get_settings()
    payload = dict(data)
    payload["exp"] = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    if settings.JWT_AUDIENCE:
        payload["aud"] = settings.JWT_AUDIENCE
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    settings = get_settings()
    options = {} if settings.JWT_AUDIENCE else {"verify_aud": False}
    return jwt.decode(
        token,
        settings.JWT_SECRET,
        algorithms=[settings.JWT_ALGORITHM],
        audience=settings.JWT_AUDIENCE,
        options=options,
    )


async def get_token_payload(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict:
    """Verify the bearer token and return its claims, or fail with 401."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = decode_access_token(credentials.credentials)
    except jwt.PyJWTError as e:
        logger.warning("token_rejected", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has no subject",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return payload


async def get_current_user_id(payload: dict = Depends(get_token_payload)) -> str:
    return str(payload["sub"])


def _roles(payload: dict) -> set[str]:
    roles = payload.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    if payload.get("role"):
        roles = [*roles, payload["role"]]
    return set(roles)


def require_roles(*allowed: str):
    """Dependency factory: the token must carry one of `allowed` in role/roles."""

    async def dependency(payload: dict = Depends(get_token_payload)) -> str:
        if not _roles(payload) & set(allowed):
            logger.warning("role_rejected", sub=payload.get("sub"), required=list(allowed))
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return str(payload["sub"])

    return dependency


require_admin = require_roles("admin")
require_gate_staff = require_roles("admin", "staff")
