# app/api/deps.py
from fastapi import Request

from app.core.config import Settings


def get_gateway_settings(request: Request) -> Settings:
    """Settings the application was created with."""
    return request.app.state.settings
