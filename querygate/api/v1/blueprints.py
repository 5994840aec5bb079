"""Blueprint discovery endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from querygate.core.deps import get_current_user, get_query_guard, get_registry
from querygate.models.user import User
from querygate.services.blueprint import BlueprintRegistry
from querygate.services.guard import QueryGuard

router = APIRouter(prefix="/blueprints", tags=["blueprints"])


@router.get("", response_model=dict)
async def list_blueprints(
    current_user: Annotated[User, Depends(get_current_user)],
    blueprints: Annotated[BlueprintRegistry, Depends(get_registry)],
):
    """List every registered blueprint as registered."""
    return {
        "success": True,
        "data": [blueprints.lookup(name).to_dict() for name in blueprints.names()],
    }


@router.get("/{blueprint_name}", response_model=dict)
async def get_blueprint(
    blueprint_name: str,
    current_user: Annotated[User, Depends(get_current_user)],
    blueprints: Annotated[BlueprintRegistry, Depends(get_registry)],
    guard: Annotated[QueryGuard, Depends(get_query_guard)],
    effective: bool = Query(False, description="Apply the system and caller configurations"),
):
    """Describe one blueprint, optionally narrowed for the caller."""
    if effective:
        blueprint = await guard.effective_blueprint(blueprint_name, current_user.id)
    else:
        blueprint = blueprints.lookup(blueprint_name)
    return {"success": True, "data": blueprint.to_dict()}
