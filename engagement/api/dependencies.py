from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from engagement.db.engine import async_session_factory, session_scope
from engagement.models.principal import Principal
from engagement.repos.activity_event_repo import (
    ActivityEventRepo,
    InMemoryActivityEventRepo,
)
from engagement.repos.pg_activity_event_repo import PgActivityEventRepo
from engagement.services import token_service

logger = logging.getLogger(__name__)

# tokenUrl points at the platform identity service; this service never issues tokens.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/oauth/token")

# In-memory store used when DATABASE_URL is not configured.
activity_repo = InMemoryActivityEventRepo()

INSTRUCTOR_ROLES = {"instructor", "admin"}


def require_user(
    raw_token: Annotated[str, Depends(oauth2_scheme)],
) -> Principal:
    """Extract and validate the JWT bearer token. Returns a Principal."""
    try:
        claims = token_service.decode_access_token(raw_token)
    except jwt.ExpiredSignatureError:
        logger.warning("Expired token rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token rejected: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    principal = Principal(
        user_id=claims["sub"],
        roles=frozenset(claims.get("roles", [])),
    )
    logger.debug(
        "Token validated for user=%s roles=%s",
        principal.user_id,
        principal.roles,
    )
    return principal


def require_any_role(roles: set[str]):
    """Dependency factory: demand at least one of the given roles.

    Usage: Depends(require_any_role({"admin", "instructor"}))
    """

    def _guard(
        principal: Annotated[Principal, Depends(require_user)],
    ) -> Principal:
        if not principal.has_any_role(roles):
            logger.warning(
                "Access denied: user=%s has none of roles=%s",
                principal.user_id,
                roles,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return principal

    return _guard


async def get_activity_repo() -> AsyncGenerator[ActivityEventRepo, None]:
    """Yield the event store for this request.

    Postgres when DATABASE_URL is set (one session per request, committed
    on success), otherwise the process-wide in-memory store.
    """
    if async_session_factory is None:
        yield activity_repo
        return
    async with session_scope() as session:
        yield PgActivityEventRepo(session)
