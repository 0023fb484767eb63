"""
User Profiles API — FastAPI dependencies

The application lifespan (or ``create_app`` when a test injects a store)
places the ``Settings`` and the ``UserService`` on ``app.state``; handlers
receive them through these dependencies instead of importing globals.
"""

from fastapi import Request

from app.config import Settings
from app.services.user_service import UserService


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_user_service(request: Request) -> UserService:
    return request.app.state.user_service
