from fastapi import APIRouter

from promptgate.api.v1.gateway_admin import router as gateway_admin_router
from promptgate.api.v1.prompts import router as prompts_router

api_v1_router = APIRouter(prefix="/api/v1")
api_v1_router.include_router(prompts_router)
api_v1_router.include_router(gateway_admin_router)
