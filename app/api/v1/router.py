from fastapi import APIRouter

from app.api.v1.health import router as health_router
from app.api.v1.csrf import router as csrf_router
from app.api.v1.scan import router as scan_router
from app.api.v1.verify import router as verify_router


v1_router = APIRouter()

# ------------------------------------------------------------------
# SYSTEM / CORE
# ------------------------------------------------------------------
v1_router.include_router(health_router, tags=["health"])
v1_router.include_router(csrf_router, tags=["csrf"])

# ------------------------------------------------------------------
# VERIFICATION
# ------------------------------------------------------------------
v1_router.include_router(scan_router, tags=["scan"])
v1_router.include_router(verify_router, tags=["verify"])
