from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from authgate.storage.models import (
    APP_NAME_MAX_LENGTH,
    EMAIL_MAX_LENGTH,
    PHONE_MAX_LENGTH,
    USERNAME_MAX_LENGTH,
)

# Upper bound on free-form string fields accepted from clients
MAX_FIELD_LENGTH = 1024


class ErrorBody(BaseModel):
    """Error response: a human-readable message, plus itemized rule failures."""

    message: str
    errors: Optional[List[str]] = None


class RegisterRequest(BaseModel):
    # Rules are checked by the service so every violation is reported together
    username: Optional[str] = Field(None, max_length=USERNAME_MAX_LENGTH)
    email: Optional[str] = Field(None, max_length=EMAIL_MAX_LENGTH)
    phone: Optional[str] = Field(None, max_length=PHONE_MAX_LENGTH)
    password: Optional[str] = Field(None, max_length=MAX_FIELD_LENGTH)


class LoginRequest(BaseModel):
    username: Optional[str] = Field(None, max_length=MAX_FIELD_LENGTH)
    password: Optional[str] = Field(None, max_length=MAX_FIELD_LENGTH)


class PublicUser(BaseModel):
    id: int
    username: str
    email: str


class AuthResponse(BaseModel):
    message: str
    user: PublicUser
    cookie: str = Field(..., description="Raw session key for Authorization: Bearer")


class ProfileResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    username: str
    email: str
    phone: str
    created_at: datetime = Field(..., alias="createdAt")


class CheckResponse(BaseModel):
    authenticated: bool
    userId: Optional[int] = None
    username: Optional[str] = None


class MessageResponse(BaseModel):
    message: str


class AppRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=APP_NAME_MAX_LENGTH)
    path: Optional[str] = None


class AppResponse(BaseModel):
    id: int
    name: str
    path: str
