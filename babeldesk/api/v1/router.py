"""Aggregate all v1 API routers."""

from fastapi import APIRouter
from babeldesk.api.v1.health import router as health_router
from babeldesk.api.v1.translations import router as translations_router
from babeldesk.api.v1.history import router as history_router
from babeldesk.api.v1.environment import router as environment_router
from babeldesk.api.v1.events import router as events_router

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(health_router, tags=["health"])
v1_router.include_router(translations_router, tags=["translations"])
v1_router.include_router(history_router, tags=["history"])
v1_router.include_router(environment_router, tags=["environment"])
v1_router.include_router(events_router, tags=["events"])
