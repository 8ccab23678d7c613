# app/api/endpoints/status.py
from fastapi import APIRouter

from app.api.models.status import HealthResponse, ReadyResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse, summary="Health Check")
async def health() -> HealthResponse:
    """Basic health check endpoint. Never gated."""
    return HealthResponse()


@router.get("/ready", response_model=ReadyResponse, summary="Readiness Check")
async def ready() -> ReadyResponse:
    return ReadyResponse()
