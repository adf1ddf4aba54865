"""API v1 router initialization."""
from fastapi import APIRouter

from .access import router as access_router
from .observed_users import router as observed_users_router

# Create v1 router
router = APIRouter()

router.include_router(
    access_router,
    prefix="/access",
    tags=["access"]
)
router.include_router(
    observed_users_router,
    prefix="/observed-users",
    tags=["observed-users"]
)
