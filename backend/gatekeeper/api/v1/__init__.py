"""API v1 module."""

from fastapi import APIRouter

from gatekeeper.api.v1 import health, repositories, webhooks

router = APIRouter()

router.include_router(health.router, prefix="/health", tags=["health"])
router.include_router(repositories.router, prefix="/repositories", tags=["repositories"])
router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
