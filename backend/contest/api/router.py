from __future__ import annotations

from fastapi import APIRouter

from contest.api.assets import router as assets_router
from contest.api.rooms import router as rooms_router
from contest.api.system import router as system_router
from contest.api.ws import router as ws_router

api_router = APIRouter()
api_router.include_router(system_router)
api_router.include_router(rooms_router)
api_router.include_router(ws_router)
# Catch-all asset route, keep last.
api_router.include_router(assets_router)
