"""Versioned API router."""

from fastapi import APIRouter

from . import health, medical_cards, nurse, sessions

router = APIRouter()
router.include_router(health.router, prefix="/health", tags=["health"])
router.include_router(nurse.router, prefix="/nurse", tags=["nurse"])
router.include_router(
    medical_cards.router, prefix="/medical-cards", tags=["medical-cards"]
)
router.include_router(sessions.router, prefix="/sessions", tags=["sessions"])

__all__ = ["router"]
