from fastapi import APIRouter

from routers.admin_router import router as admin_router
from routers.applications_router import router as applications_router
from routers.auth_router import router as auth_router
from routers.requests_router import amendments_router, closures_router
from routers.reviews_router import router as reviews_router
from routers.stalls_router import router as stalls_router
from routers.users_router import router as users_router

api_router = APIRouter(prefix="/api")

api_router.include_router(auth_router)           # /api/auth/...
api_router.include_router(users_router)          # /api/users/...
api_router.include_router(stalls_router)         # /api/stalls/...
api_router.include_router(reviews_router)        # /api/reviews/...
api_router.include_router(applications_router)   # /api/applications/...
api_router.include_router(amendments_router)     # /api/amendments/...
api_router.include_router(closures_router)       # /api/closures/...
api_router.include_router(admin_router)          # /api/admin/...
