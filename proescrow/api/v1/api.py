from fastapi import APIRouter
from proescrow.api.v1.routes.bookings import router as bookings_router
from proescrow.api.v1.routes.rectification import router as rectification_router
from proescrow.api.v1.routes.scope_changes import router as scope_changes_router
from proescrow.api.v1.routes.admin import router as admin_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(bookings_router)
api_router.include_router(rectification_router)
api_router.include_router(scope_changes_router)
api_router.include_router(admin_router)
