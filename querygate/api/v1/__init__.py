"""API v1 router that aggregates all sub-routers."""

from fastapi import APIRouter

from querygate.api.v1.blueprints import router as blueprints_router
from querygate.api.v1.query import router as query_router
from querygate.api.v1.query_configs import router as query_configs_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(blueprints_router)
api_router.include_router(query_router)
api_router.include_router(query_configs_router)
