from fastapi import APIRouter, Depends

from .dependencies import get_settings_dep
from .models import HealthResponse
from ..config import Settings

router = APIRouter(tags=["health"])

@router.get("/health", response_model=HealthResponse)
def health(settings: Settings = Depends(get_settings_dep)):
    return HealthResponse(
        status="ok",
        vector_backend=settings.vector_backend,
        kv_backend=settings.kv_backend,
    )
