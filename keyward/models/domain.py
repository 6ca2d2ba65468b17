"""Inter-module data contracts (not persisted directly)."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, model_validator
from webauthn.helpers import parse_registration_options_json
from webauthn.helpers.exceptions import WebAuthnException
from webauthn.helpers.structs import PublicKeyCredentialCreationOptions

from keyward.types import AttestationType


class PendingRegistration(BaseModel):
    """A registration challenge waiting in the challenge store.

    ``options`` holds the standard PublicKeyCredentialCreationOptions JSON,
    so the entry serializes to plain JSON for any store backend and decodes
    back to the exact options handed to the client.
    """

    token: str
    account_id: str
    display_name: str = ""
    options: dict[str, Any]
    issued_at: datetime
    expires_at: datetime

    @model_validator(mode="after")
    def _options_decode(self) -> PendingRegistration:
        try:
            parse_registration_options_json(self.options)
        except (WebAuthnException, ValueError, KeyError, TypeError) as exc:
            msg = f"options are not valid creation options: {exc}"
            raise ValueError(msg) from exc
        return self

    def creation_options(self) -> PublicKeyCredentialCreationOptions:
        return parse_registration_options_json(self.options)


class VerifiedCredential(BaseModel):
    """Public-key credential source produced by a successful attestation check."""

    credential_id: bytes
    public_key: bytes
    sign_count: int
    attestation_type: AttestationType
    attestation_format: str
    transports: list[str] = []
    aaguid: str = ""
    user_handle: bytes
    device_type: str = "single_device"
    backed_up: bool = False
    user_verified: bool = False
