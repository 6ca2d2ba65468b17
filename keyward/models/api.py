"""API request/response schemas for FastAPI endpoints."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class BeginRegistrationRequest(BaseModel):
    display_name: str | None = Field(default=None, max_length=191)


class RegistrationOptionsData(BaseModel):
    token_id: str
    credentials: dict[str, Any]


class BeginRegistrationResponse(BaseModel):
    data: RegistrationOptionsData


class FinishRegistrationRequest(BaseModel):
    token_id: str
    registration: dict[str, Any]
    name: str = Field(default="", max_length=191)


class SecurityKeyData(BaseModel):
    id: int
    name: str
    public_key_id: str
    created_at: datetime
    updated_at: datetime


class SecurityKeyResponse(BaseModel):
    data: SecurityKeyData


class SecurityKeyListResponse(BaseModel):
    data: list[SecurityKeyData]
