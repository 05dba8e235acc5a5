"""User Routes — registration (multipart), login and logout.

Invariants:
    - Every success body is an ApiResponse envelope
    - Login sets accessToken/refreshToken as httpOnly secure cookies; logout clears both
    - Routes never contain business logic (UserService owns it)
"""

import logging

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from fastapi.responses import JSONResponse

from vidhub.api.dependencies import get_current_user, get_user_service
from vidhub.models.user import User
from vidhub.schemas.common import ApiResponse
from vidhub.schemas.user import UserLogin
from vidhub.services.user_service import UserService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/user", tags=["users"])

_COOKIE_OPTIONS = {"httponly": True, "secure": True}


@router.post("/registerNewUser", status_code=status.HTTP_201_CREATED)
async def register_new_user(
    username: str = Form(..., max_length=64),
    email: str = Form(..., max_length=320),
    full_name: str = Form(..., max_length=200),
    password: str = Form(..., max_length=256),
    avatar: UploadFile | None = File(None),
    cover_image: UploadFile | None = File(None),
    service: UserService = Depends(get_user_service),
):
    user = await service.register(
        username, email, full_name, password, avatar, cover_image,
    )
    body = ApiResponse.of(
        status.HTTP_201_CREATED, {"id": str(user.id)}, "User registered successfully",
    )
    return body.model_dump()


@router.post("/login")
async def login(
    credentials: UserLogin,
    service: UserService = Depends(get_user_service),
):
    result = await service.authenticate(credentials)
    body = ApiResponse.of(
        status.HTTP_200_OK, result.model_dump(mode="json"), "User logged in successfully",
    )
    response = JSONResponse(content=body.model_dump())
    response.set_cookie("accessToken", result.access_token, **_COOKIE_OPTIONS)
    response.set_cookie("refreshToken", result.refresh_token, **_COOKIE_OPTIONS)
    return response


@router.post("/logout")
async def logout(
    user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    await service.logout(user)
    body = ApiResponse.of(status.HTTP_200_OK, {}, "User logged out")
    response = JSONResponse(content=body.model_dump())
    response.delete_cookie("accessToken", **_COOKIE_OPTIONS)
    response.delete_cookie("refreshToken", **_COOKIE_OPTIONS)
    return response
