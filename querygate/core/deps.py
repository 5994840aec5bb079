"""FastAPI dependencies for auth, DB session, cache, RBAC and query enforcement."""

import json
import uuid
from typing import Annotated, Any

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from querygate.core.cache import get_redis
from querygate.core.exceptions import MalformedFilterError
from querygate.core.security import decode_access_token
from querygate.database import get_db
from querygate.models.enums import UserRole
from querygate.models.user import User
from querygate.services.blueprint import BlueprintRegistry, registry
from querygate.services.config_resolver import ConfigResolver
from querygate.services.filter_validator import ValidatedQuery
from querygate.services.guard import QueryGuard

security_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """Extract and validate JWT, return the authenticated user."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required.",
        )

    try:
        payload = decode_access_token(credentials.credentials)
        user_id = uuid.UUID(payload["sub"])
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired. Please log in again.",
        )
    except (jwt.PyJWTError, KeyError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token.",
        )

    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account not found or deactivated.",
        )

    request.state.current_user = user
    return user


def require_role(*allowed_roles: UserRole):
    """Dependency factory: restrict endpoint to specific roles."""
    async def role_checker(
        user: Annotated[User, Depends(get_current_user)],
    ) -> User:
        if user.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have permission to perform this action.",
            )
        return user
    return role_checker


def get_cache() -> Redis:
    return get_redis()


def get_registry() -> BlueprintRegistry:
    return registry


def get_config_resolver(
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[Redis, Depends(get_cache)],
) -> ConfigResolver:
    return ConfigResolver(db, cache)


def get_query_guard(
    blueprints: Annotated[BlueprintRegistry, Depends(get_registry)],
    resolver: Annotated[ConfigResolver, Depends(get_config_resolver)],
) -> QueryGuard:
    return QueryGuard(blueprints, resolver)


async def _read_json_body(request: Request) -> Any:
    raw = await request.body()
    if not raw.strip():
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise MalformedFilterError("Request body is not valid JSON.")


def validate_query(blueprint_key: str | None = None):
    """Dependency factory: enforce a blueprint on the request's query body.

    With no ``blueprint_key`` the key is taken from the ``blueprint_name``
    path parameter. The dependency yields the ValidatedQuery, or None when
    the body carries no filter, select or sort.
    """
    async def checker(
        request: Request,
        user: Annotated[User, Depends(get_current_user)],
        guard: Annotated[QueryGuard, Depends(get_query_guard)],
    ) -> ValidatedQuery | None:
        key = blueprint_key or request.path_params["blueprint_name"]
        body = await _read_json_body(request)
        return await guard.enforce(key, user.id, body)
    return checker
