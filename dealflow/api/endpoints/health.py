from fastapi import APIRouter

from dealflow.core.config import settings

router = APIRouter()


@router.get("")
def health_check():
    """
    Check the health of the API.
    """
    return {
        "status": "ok",
        "service": settings.PROJECT_NAME,
        "scheduler": settings.SCHEDULER_ENABLED,
    }
