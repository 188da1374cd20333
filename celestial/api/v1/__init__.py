"""API v1 routes."""

from fastapi import APIRouter, Depends

from celestial.api.deps import authorize
from celestial.api.v1 import auth, health

router = APIRouter(dependencies=[Depends(authorize)])
router.include_router(health.router, prefix="/health", tags=["health"])
router.include_router(auth.router, prefix="/auth", tags=["auth"])
