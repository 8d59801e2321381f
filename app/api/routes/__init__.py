"""
API Routes
"""
from fastapi import APIRouter

from app.api.routes.listings import router as listings_router
from app.api.routes.feed import router as feed_router
from app.api.routes.sellers import router as sellers_router
from app.api.routes.admin import router as admin_router

router = APIRouter()

router.include_router(listings_router, prefix="/listings", tags=["Listings"])
router.include_router(feed_router, prefix="/feed", tags=["Feed"])
router.include_router(sellers_router, prefix="/sellers", tags=["Sellers"])
router.include_router(admin_router, prefix="/admin/listings", tags=["Admin"])
