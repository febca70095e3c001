from fastapi import APIRouter
from dealflow.api.endpoints import health_router, workflows_router

router = APIRouter()

router.include_router(health_router, prefix="/health", tags=["health"])
router.include_router(workflows_router, prefix="/workflows", tags=["workflows"])
