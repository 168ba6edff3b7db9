"""API v1 routes."""

from fastapi import APIRouter

from app.api.v1 import health, vulnerabilities

router = APIRouter()
router.include_router(health.router, prefix="/health", tags=["health"])
router.include_router(vulnerabilities.router, prefix="/vulnerabilities", tags=["vulnerabilities"])
