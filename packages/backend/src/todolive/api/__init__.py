"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Auth is applied at the include_router level using FastAPI's
dependencies parameter. This protects all routes in each router
without modifying individual handlers. Health and auth routers are
open (no auth required); /auth/me checks the token itself.
"""

from fastapi import APIRouter, Depends

from todolive.api.auth import router as auth_router
from todolive.api.files import router as files_router
from todolive.api.health import router as health_router
from todolive.api.notifications import router as notifications_router
from todolive.api.realtime import router as realtime_router
from todolive.api.todos import router as todos_router
from todolive.auth.dependencies import get_current_user

# All protected routers require authentication
_auth = [Depends(get_current_user)]

api_router = APIRouter(prefix="/api/v1")

# Open routes: no auth required
api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])

# Protected routes: require a valid access token
api_router.include_router(todos_router, tags=["todos"], dependencies=_auth)
api_router.include_router(files_router, tags=["files"], dependencies=_auth)
api_router.include_router(notifications_router, tags=["notifications"], dependencies=_auth)
api_router.include_router(realtime_router, tags=["realtime"], dependencies=_auth)
