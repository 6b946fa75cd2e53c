"""
API Routes
"""
from fastapi import APIRouter

from app.api.routes.orders import router as orders_router
from app.api.routes.riders import router as riders_router
from app.api.routes.finance import router as finance_router
from app.api.routes.settings import router as settings_router

router = APIRouter()

router.include_router(orders_router, prefix="/orders", tags=["Orders"])
router.include_router(riders_router, prefix="/riders", tags=["Riders"])
router.include_router(finance_router, prefix="/finance", tags=["Finance"])
router.include_router(settings_router, prefix="/settings", tags=["Settings"])
