"""User Schemas — Pydantic models with field-level validation for API boundaries.

Invariants:
    - UserLogin requires username or email, plus a non-empty password
    - username and email normalized to lowercase, stripped
    - UserPublic never exposes password_hash or refresh_token

Design Decisions:
    - Registration arrives as multipart form (files + fields): validated in the route
      signature and UserService, not through a body model
    - model_validator for cross-field rules, field_validator for side-effect-free transforms
"""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class UserLogin(BaseModel):
    """Login — either identifier works."""
    username: str | None = Field(None, max_length=64)
    email: str | None = Field(None, max_length=320)
    password: str = Field(min_length=1, max_length=256)

    @field_validator("username", "email")
    @classmethod
    def normalize_identifier(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip().lower()
        return v or None

    @model_validator(mode="after")
    def require_identifier(self) -> "UserLogin":
        if not self.username and not self.email:
            raise ValueError("username or email required")
        return self


class UserPublic(BaseModel):
    """Public profile — safe to return to the owner."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    username: str
    email: str
    full_name: str
    avatar: str
    cover_image: str
    watch_history: list


class LoginResult(BaseModel):
    user: UserPublic
    access_token: str
    refresh_token: str
