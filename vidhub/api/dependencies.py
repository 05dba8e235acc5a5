"""Request Dependencies — per-worker resources read from app.state.

Invariants:
    - Nothing here reads the environment: create_app(settings) put everything on app.state
    - get_current_user accepts the accessToken cookie or an `Authorization: Bearer` header
"""

import logging

import httpx
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from vidhub.config import Settings
from vidhub.core.errors import AuthenticationError
from vidhub.infrastructure.cache import RedisCache
from vidhub.infrastructure.database import get_db
from vidhub.infrastructure.media_storage import MediaStorage
from vidhub.infrastructure.security import decode_access_token
from vidhub.models.user import User
from vidhub.services.user_service import UserService

logger = logging.getLogger(__name__)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_cache(request: Request) -> RedisCache:
    return request.app.state.cache


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def get_media(request: Request) -> MediaStorage:
    return request.app.state.media


def get_user_service(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    media: MediaStorage = Depends(get_media),
) -> UserService:
    return UserService(db, settings, media)


def bearer_token(header: str | None) -> str | None:
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if token and scheme.lower() == "bearer":
        return token.strip()
    return header.strip() or None


async def get_current_user(
    request: Request,
    service: UserService = Depends(get_user_service),
    settings: Settings = Depends(get_app_settings),
) -> User:
    token = request.cookies.get("accessToken") or bearer_token(
        request.headers.get("authorization"),
    )
    if not token:
        raise AuthenticationError()
    claims = decode_access_token(settings, token)
    user = await service.get_by_id(str(claims.get("sub", "")))
    if user is None:
        raise AuthenticationError("Invalid access token")
    return user
