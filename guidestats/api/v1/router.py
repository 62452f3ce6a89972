from fastapi import APIRouter

from guidestats.api.v1 import localguides

api_router = APIRouter(prefix="/v1")

api_router.include_router(localguides.router, prefix="/localguides", tags=["Local Guides"])
