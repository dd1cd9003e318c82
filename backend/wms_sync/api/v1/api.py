from fastapi import APIRouter

from wms_sync.api.v1.endpoints import integrations, sync

api_router = APIRouter()
api_router.include_router(sync.router, prefix="/sync", tags=["sync"])
api_router.include_router(integrations.router, prefix="/integrations", tags=["integrations"])
