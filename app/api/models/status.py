# app/api/models/status.py
from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Fixed liveness payload."""
    uptime: int = Field(42069, description="Static uptime marker")


class ReadyResponse(BaseModel):
    status: str = Field("ready", description="Readiness state")


class PaidMessageResponse(BaseModel):
    """Masked message served by the priced test endpoint."""
    message: str = Field("*****", description="Masked content")
