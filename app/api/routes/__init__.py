"""
API Routes
"""
from fastapi import APIRouter

from app.api.routes.bookings import router as bookings_router
from app.api.routes.wallets import router as wallets_router
from app.api.routes.transactions import router as transactions_router
from app.api.routes.models import router as models_router

router = APIRouter()

router.include_router(bookings_router, prefix="/bookings", tags=["bookings"])
router.include_router(wallets_router, prefix="/wallets", tags=["wallets"])
router.include_router(transactions_router, prefix="/transactions", tags=["transactions"])
router.include_router(models_router, prefix="/models", tags=["models"])
