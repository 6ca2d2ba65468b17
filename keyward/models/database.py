"""SQLModel database table models."""

from __future__ import annotations

import secrets
import uuid
from datetime import UTC, datetime

from sqlmodel import Field, SQLModel

USER_HANDLE_BYTES = 32


def _utc_now() -> datetime:
    """Return current UTC time as naive datetime for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def _new_uuid() -> str:
    return str(uuid.uuid4())


def _new_user_handle() -> bytes:
    return secrets.token_bytes(USER_HANDLE_BYTES)


class Account(SQLModel, table=True):
    __tablename__ = "accounts"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    username: str = Field(index=True, unique=True)
    email: str = Field(index=True)
    # Opaque WebAuthn user.id; never derived from PII.
    user_handle: bytes = Field(default_factory=_new_user_handle, unique=True)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class CredentialSource(SQLModel, table=True):
    __tablename__ = "credential_sources"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    account_id: str = Field(foreign_key="accounts.id", index=True)
    credential_id: bytes = Field(unique=True)
    public_key: bytes
    sign_count: int = Field(default=0)
    attestation_type: str = Field(default="none")
    attestation_format: str = Field(default="none")
    transports: str = Field(default="[]")  # JSON list
    aaguid: str = Field(default="")
    user_handle: bytes
    device_type: str = Field(default="single_device")
    backed_up: bool = Field(default=False)
    created_at: datetime = Field(default_factory=_utc_now)


class SecurityKey(SQLModel, table=True):
    __tablename__ = "security_keys"

    id: int | None = Field(default=None, primary_key=True)
    account_id: str = Field(foreign_key="accounts.id", index=True)
    credential_source_id: str = Field(foreign_key="credential_sources.id", unique=True)
    public_key_id: str = Field(unique=True)  # base64 of the credential id
    name: str
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class RegistrationChallengeRecord(SQLModel, table=True):
    __tablename__ = "registration_challenges"

    token: str = Field(primary_key=True)
    payload: str  # PendingRegistration JSON
    expires_at: datetime = Field(index=True)
