from fastapi import APIRouter
from smartsafe.api.v1 import auth, events, safe, sensors, users

api_router = APIRouter(prefix="/v1")
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(users.admin_router, prefix="/admin", tags=["admin"])
api_router.include_router(users.router, prefix="/users", tags=["users"])
api_router.include_router(events.router, prefix="/events", tags=["events"])
api_router.include_router(safe.router, prefix="/safe", tags=["safe"])
api_router.include_router(sensors.router, prefix="/sensors", tags=["sensors"])
