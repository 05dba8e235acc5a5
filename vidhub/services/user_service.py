"""User Service — registration, login and logout business rules.

Invariants:
    - Registration: all text fields non-blank, avatar required, username/email unique
    - Uploads stored only after the uniqueness and password-length checks pass
    - A failed commit removes the uploads it stored
    - Login: unknown identifier → 404, wrong password → 400 (never reveals which field matched)
    - A successful login persists the refresh token; logout clears it

Design Decisions:
    - Service receives session, settings and media storage explicitly: no globals,
      each worker process wires its own (ADR: per-process resources)
    - Commit inside the service, rollback left to DatabaseSessionManager.session()
    - bcrypt runs in a worker thread (asyncio.to_thread): the event loop keeps serving
"""

import asyncio
import logging
import uuid

from fastapi import UploadFile
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vidhub.config import Settings
from vidhub.core.errors import (
    ConflictError, RequestValidationFailed, ResourceNotFoundError,
)
from vidhub.infrastructure.media_storage import MediaStorage
from vidhub.infrastructure.security import (
    create_access_token, create_refresh_token, ensure_hashable, hash_password,
    verify_password,
)
from vidhub.models.user import User
from vidhub.schemas.user import LoginResult, UserLogin, UserPublic

logger = logging.getLogger(__name__)


class UserService:
    """Account operations for one request."""

    def __init__(self, db: AsyncSession, settings: Settings, media: MediaStorage | None = None):
        self.db = db
        self.settings = settings
        self.media = media

    async def register(
        self,
        username: str,
        email: str,
        full_name: str,
        password: str,
        avatar: UploadFile | None,
        cover_image: UploadFile | None = None,
    ) -> User:
        username = username.strip().lower()
        email = email.strip().lower()
        full_name = full_name.strip()
        if not all((username, email, full_name, password.strip())):
            raise RequestValidationFailed("All fields are required")
        ensure_hashable(password)
        if await self._find(username=username, email=email) is not None:
            raise ConflictError("User with email or username already exists")
        if avatar is None or not avatar.filename:
            raise RequestValidationFailed("Avatar file is required", "avatar")
        if self.media is None:
            raise RuntimeError("Media storage not initialized")

        avatar_url = await self.media.save(avatar, "avatar")
        cover_url = ""
        if cover_image is not None and cover_image.filename:
            cover_url = await self.media.save(cover_image, "coverImage")
        stored = [url for url in (avatar_url, cover_url) if url]

        user = User(
            username=username,
            email=email,
            full_name=full_name,
            avatar=avatar_url,
            cover_image=cover_url,
            watch_history=[],
            password_hash=await asyncio.to_thread(hash_password, password),
        )
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self._discard(stored)
            raise ConflictError("User with email or username already exists") from e
        except SQLAlchemyError:
            await self._discard(stored)
            raise
        await self.db.refresh(user)
        logger.info(
            f"Registered user {user.username}",
            extra={"service": "users", "user_id": str(user.id)},
        )
        return user

    async def authenticate(self, credentials: UserLogin) -> LoginResult:
        user = await self._find(username=credentials.username, email=credentials.email)
        if user is None:
            raise ResourceNotFoundError(
                "User", credentials.username or credentials.email or "",
            )
        if not await asyncio.to_thread(
            verify_password, credentials.password, user.password_hash,
        ):
            raise RequestValidationFailed("Invalid user credentials", "password")

        user_id = str(user.id)
        access = create_access_token(
            self.settings, user_id, user.username, user.email, user.full_name,
        )
        refresh = create_refresh_token(self.settings, user_id)
        user.refresh_token = refresh
        await self.db.commit()
        logger.info(
            f"User {user.username} logged in",
            extra={"service": "users", "user_id": user_id},
        )
        return LoginResult(
            user=UserPublic.model_validate(user),
            access_token=access,
            refresh_token=refresh,
        )

    async def logout(self, user: User) -> None:
        user.refresh_token = None
        await self.db.commit()
        logger.info(
            f"User {user.username} logged out",
            extra={"service": "users", "user_id": str(user.id)},
        )

    async def get_by_id(self, user_id: str) -> User | None:
        try:
            key = uuid.UUID(user_id)
        except ValueError:
            return None
        return await self.db.get(User, key)

    async def _discard(self, urls: list[str]) -> None:
        await self.db.rollback()
        for url in urls:
            await self.media.delete(url)

    async def _find(self, username: str | None = None, email: str | None = None) -> User | None:
        clauses = []
        if username:
            clauses.append(User.username == username)
        if email:
            clauses.append(User.email == email)
        if not clauses:
            return None
        result = await self.db.execute(select(User).where(or_(*clauses)).limit(1))
        return result.scalar_one_or_none()
