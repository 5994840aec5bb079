"""Query configuration endpoints: per-user overrides and system defaults."""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from querygate.core.deps import get_config_resolver, get_current_user, require_role
from querygate.database import get_db
from querygate.models.enums import UserRole
from querygate.models.query_config import QueryConfig
from querygate.models.user import User
from querygate.schemas import PaginationMeta
from querygate.schemas.query_config import (
    EffectiveConfigRead,
    QueryConfigCreate,
    QueryConfigRead,
    QueryConfigUpdate,
)
from querygate.services.config_resolver import ConfigResolver
from querygate.services.query_config import QueryConfigService

router = APIRouter(prefix="/query-configs", tags=["query-configs"])


def _is_admin(user: User) -> bool:
    return user.role == UserRole.ADMIN


def _can_read(user: User, config: QueryConfig) -> bool:
    return config.user_id is None or config.user_id == user.id or _is_admin(user)


def _can_write(user: User, config: QueryConfig) -> bool:
    if config.user_id is None:
        return _is_admin(user)
    return config.user_id == user.id or _is_admin(user)


async def _get_visible(svc: QueryConfigService, config_id: uuid.UUID, user: User) -> QueryConfig:
    config = await svc.get(config_id)
    # Other users' overrides are reported as missing rather than forbidden.
    if not _can_read(user, config):
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Configuration not found.")
    return config


def _read(config: QueryConfig) -> dict:
    return QueryConfigRead.model_validate(config).model_dump(mode="json")


@router.get("", response_model=dict)
async def list_configs(
    db: Annotated[AsyncSession, Depends(get_db)],
    resolver: Annotated[ConfigResolver, Depends(get_config_resolver)],
    current_user: Annotated[User, Depends(get_current_user)],
    key: str | None = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
):
    """List the caller's overrides and the system defaults (admins see all)."""
    svc = QueryConfigService(db, resolver)
    user_ids = None if _is_admin(current_user) else [current_user.id, None]
    configs, total = await svc.list_configs(
        key=key, user_ids=user_ids, page=page, per_page=per_page,
    )
    return {
        "success": True,
        "data": [_read(c) for c in configs],
        "meta": PaginationMeta.build(page, per_page, total).model_dump(),
    }


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_config(
    data: QueryConfigCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    resolver: Annotated[ConfigResolver, Depends(get_config_resolver)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    """Create an override for the caller, or a system default (admin only)."""
    if data.system and not _is_admin(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only administrators may create system defaults.",
        )
    svc = QueryConfigService(db, resolver)
    config = await svc.create(
        key=data.key,
        value=data.value,
        user_id=None if data.system else current_user.id,
        actor_id=current_user.id,
    )
    return {"success": True, "data": _read(config)}


@router.get("/key/{key}", response_model=dict)
async def get_effective_config(
    key: str,
    resolver: Annotated[ConfigResolver, Depends(get_config_resolver)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    """Resolve ``key`` for the caller: their override, else the system default."""
    value = await resolver.resolve(key, current_user.id)
    return {
        "success": True,
        "data": EffectiveConfigRead(key=key, value=value).model_dump(mode="json"),
    }


@router.get("/{config_id}", response_model=dict)
async def get_config(
    config_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    resolver: Annotated[ConfigResolver, Depends(get_config_resolver)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    svc = QueryConfigService(db, resolver)
    config = await _get_visible(svc, config_id, current_user)
    return {"success": True, "data": _read(config)}


@router.put("/{config_id}", response_model=dict)
async def update_config(
    config_id: uuid.UUID,
    data: QueryConfigUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    resolver: Annotated[ConfigResolver, Depends(get_config_resolver)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    """Replace a configuration's value. System defaults are admin only."""
    svc = QueryConfigService(db, resolver)
    config = await _get_visible(svc, config_id, current_user)
    if not _can_write(current_user, config):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have permission to modify this configuration.",
        )
    config = await svc.update(config_id, value=data.value, actor_id=current_user.id)
    return {"success": True, "data": _read(config)}


@router.delete("/{config_id}", response_model=dict)
async def delete_config(
    config_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    resolver: Annotated[ConfigResolver, Depends(get_config_resolver)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    svc = QueryConfigService(db, resolver)
    config = await _get_visible(svc, config_id, current_user)
    if not _can_write(current_user, config):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have permission to delete this configuration.",
        )
    await svc.delete(config_id, actor_id=current_user.id)
    return {"success": True, "data": None}


@router.delete("/cache/{key}", response_model=dict)
async def evict_cached_config(
    key: str,
    resolver: Annotated[ConfigResolver, Depends(get_config_resolver)],
    current_user: Annotated[User, Depends(require_role(UserRole.ADMIN))],
    user_id: uuid.UUID | None = None,
):
    """Evict one cached slot after an out-of-band storage change (admin only).

    Without ``user_id`` the system-default slot is evicted.
    """
    evicted = await resolver.invalidate(key, user_id)
    return {"success": True, "data": {"key": key, "user_id": str(user_id) if user_id else None, "evicted": evicted}}
