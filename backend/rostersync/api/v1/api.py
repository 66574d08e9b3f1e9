from fastapi import APIRouter

from rostersync.api.v1.endpoints import sync

api_router = APIRouter()
api_router.include_router(sync.router, prefix="/sync", tags=["sync"])
