"""Builds credential-creation options for one registration attempt."""

from __future__ import annotations

import json
import secrets
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from webauthn import generate_registration_options, options_to_json
from webauthn.helpers.cose import COSEAlgorithmIdentifier
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AuthenticatorSelectionCriteria,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from keyward.exceptions import InvalidAccountState

if TYPE_CHECKING:
    from keyward.config.settings import Settings
    from keyward.models.database import Account


class ChallengeIssuer:
    """Creates PublicKeyCredentialCreationOptions from relying-party policy."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def issue(
        self,
        account: Account | None,
        existing_credential_ids: Iterable[bytes] = (),
        display_name: str | None = None,
    ) -> dict[str, Any]:
        """Return creation options as standard JSON for ``account``.

        Existing credential ids go into ``excludeCredentials`` so the same
        authenticator cannot be registered twice.
        """
        if account is None or not account.is_active:
            msg = "Account cannot be resolved for security key registration"
            raise InvalidAccountState(msg)

        s = self._settings
        options = generate_registration_options(
            rp_id=s.rp_id,
            rp_name=s.rp_name,
            user_id=account.user_handle,
            user_name=account.username,
            user_display_name=display_name or account.username,
            challenge=secrets.token_bytes(s.challenge_bytes),
            timeout=s.registration_timeout_ms,
            attestation=AttestationConveyancePreference(s.attestation_preference),
            authenticator_selection=AuthenticatorSelectionCriteria(
                resident_key=ResidentKeyRequirement.DISCOURAGED,
                user_verification=(
                    UserVerificationRequirement.REQUIRED
                    if s.require_user_verification
                    else UserVerificationRequirement.PREFERRED
                ),
            ),
            exclude_credentials=[
                PublicKeyCredentialDescriptor(id=cid) for cid in existing_credential_ids
            ],
            supported_pub_key_algs=[COSEAlgorithmIdentifier(a) for a in s.supported_algorithms],
        )
        return json.loads(options_to_json(options))
