from fastapi import APIRouter

from provisioning_app.web.routers.admin import router as admin_router
from provisioning_app.web.routers.auth import router as auth_router
from provisioning_app.web.routers.system import router as system_router
from provisioning_app.web.routers.university import router as university_router


router = APIRouter()
router.include_router(system_router)
router.include_router(auth_router)
router.include_router(university_router)
router.include_router(admin_router)
