from __future__ import annotations

from fastapi import APIRouter

from app.api.v1 import auth, sessions, signaling

api_router = APIRouter()
api_router.include_router(auth.router)
api_router.include_router(sessions.router)
api_router.include_router(signaling.router)
