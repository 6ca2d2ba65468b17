"""Attestation verification for the registration ceremony.

Checks run in a fixed order and each one is a hard gate, so a rejected
response is always reported with the first check it failed:

1. client data challenge
2. client data type and origin
3. relying-party id hash in authenticator data
4. attestation format and statement

A statement carrying a certificate chain is only accepted when a trust anchor
exists for its format. Statement verification is delegated to py_webauthn. Nothing here touches
storage; credential-id uniqueness is enforced by the persister.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from webauthn import verify_registration_response
from webauthn.helpers import (
    bytes_to_base64url,
    parse_authenticator_data,
    parse_cbor,
    parse_registration_credential_json,
)
from webauthn.helpers.exceptions import WebAuthnException
from webauthn.helpers.structs import AttestationFormat, ClientDataType

from keyward.exceptions import (
    AttestationFormatUnsupported,
    AttestationSignatureInvalid,
    ChallengeMismatch,
    CounterlessAuthenticatorRejected,
    MalformedRegistration,
    OriginMismatch,
    RelyingPartyMismatch,
)
from keyward.models.domain import VerifiedCredential
from keyward.types import AttestationType

if TYPE_CHECKING:
    from webauthn.helpers.structs import (
        AuthenticatorData,
        PublicKeyCredentialCreationOptions,
        RegistrationCredential,
    )

    from keyward.config.settings import Settings

logger = structlog.get_logger(__name__)

# Formats for which py_webauthn ships its own vendor roots.
BUILTIN_ROOT_FORMATS = frozenset(
    {
        AttestationFormat.APPLE,
        AttestationFormat.ANDROID_KEY,
        AttestationFormat.ANDROID_SAFETYNET,
    }
)


class AttestationVerifier:
    """Validates an attestation response against previously issued options."""

    def __init__(
        self,
        settings: Settings,
        pem_root_certs_by_fmt: dict[AttestationFormat, list[bytes]] | None = None,
    ) -> None:
        self._rp_id = settings.rp_id
        self._origins = list(settings.allowed_origins)
        self._accepted_formats = frozenset(settings.accepted_attestation_formats)
        self._require_user_verification = settings.require_user_verification
        self._allow_counterless = settings.allow_counterless_authenticators
        self._roots = pem_root_certs_by_fmt or {}

    def verify(
        self,
        options: PublicKeyCredentialCreationOptions,
        registration: dict[str, Any] | str,
    ) -> VerifiedCredential:
        credential = _parse_credential(registration)
        self._check_client_data(options, credential.response.client_data_json)
        fmt, auth_data, att_stmt = _parse_attestation(credential.response.attestation_object)

        expected_rp_hash = hashlib.sha256(self._rp_id.encode("utf-8")).digest()
        if not hmac.compare_digest(auth_data.rp_id_hash, expected_rp_hash):
            msg = "Authenticator data was produced for a different relying party"
            raise RelyingPartyMismatch(msg)

        if fmt not in self._accepted_formats:
            msg = f"Attestation format {fmt!r} is not accepted"
            raise AttestationFormatUnsupported(msg)

        # py_webauthn skips chain validation when it has no roots for a format.
        if att_stmt.get("x5c") and not self._has_trust_anchor(fmt):
            msg = f"No trusted attestation roots for format {fmt!r}"
            raise AttestationSignatureInvalid(msg)

        try:
            verified = verify_registration_response(
                credential=credential,
                expected_challenge=options.challenge,
                expected_rp_id=self._rp_id,
                expected_origin=self._origins,
                require_user_verification=self._require_user_verification,
                supported_pub_key_algs=[p.alg for p in options.pub_key_cred_params],
                pem_root_certs_bytes_by_fmt=self._roots,
            )
        except (WebAuthnException, ValueError) as exc:
            raise AttestationSignatureInvalid(str(exc)) from exc

        if not hmac.compare_digest(verified.credential_id, credential.raw_id):
            msg = "Attested credential id does not match the response rawId"
            raise AttestationSignatureInvalid(msg)

        if verified.sign_count == 0 and not self._allow_counterless:
            msg = "Authenticator does not implement a signature counter"
            raise CounterlessAuthenticatorRejected(msg)

        transports = credential.response.transports or []
        return VerifiedCredential(
            credential_id=verified.credential_id,
            public_key=verified.credential_public_key,
            sign_count=verified.sign_count,
            attestation_type=_attestation_type(fmt, att_stmt),
            attestation_format=fmt,
            transports=[t.value for t in transports],
            aaguid=verified.aaguid,
            user_handle=options.user.id,
            device_type=verified.credential_device_type.value,
            backed_up=verified.credential_backed_up,
            user_verified=verified.user_verified,
        )

    def _has_trust_anchor(self, fmt: str) -> bool:
        try:
            attestation_format = AttestationFormat(fmt)
        except ValueError:
            return False
        return attestation_format in BUILTIN_ROOT_FORMATS or bool(
            self._roots.get(attestation_format)
        )

    def _check_client_data(
        self, options: PublicKeyCredentialCreationOptions, client_data_json: bytes
    ) -> None:
        try:
            client_data = json.loads(client_data_json)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            msg = "clientDataJSON is not valid JSON"
            raise MalformedRegistration(msg) from exc
        if not isinstance(client_data, dict):
            msg = "clientDataJSON must be an object"
            raise MalformedRegistration(msg)

        # Compare the canonical encodings so bits hidden in base64 padding count too.
        received = str(client_data.get("challenge", "")).rstrip("=")
        expected = bytes_to_base64url(options.challenge)
        if not hmac.compare_digest(received.encode("ascii", "replace"), expected.encode("ascii")):
            msg = "Client data challenge does not match the issued challenge"
            raise ChallengeMismatch(msg)

        if client_data.get("type") != ClientDataType.WEBAUTHN_CREATE.value:
            msg = f"Unexpected client data type {client_data.get('type')!r}"
            raise OriginMismatch(msg)
        if client_data.get("origin") not in self._origins:
            msg = f"Unexpected origin {client_data.get('origin')!r}"
            raise OriginMismatch(msg)


def _parse_credential(registration: dict[str, Any] | str) -> RegistrationCredential:
    try:
        return parse_registration_credential_json(registration)
    except (WebAuthnException, ValueError, KeyError, TypeError) as exc:
        msg = f"Registration response is malformed: {exc}"
        raise MalformedRegistration(msg) from exc


def _parse_attestation(
    attestation_object: bytes,
) -> tuple[str, AuthenticatorData, dict[str, Any]]:
    """Split the CBOR attestation object into (fmt, authenticator data, attStmt).

    The format is read as a plain string so unknown formats surface as
    unsupported rather than malformed.
    """
    try:
        raw = parse_cbor(attestation_object)
        fmt = raw["fmt"]
        auth_data = parse_authenticator_data(raw["authData"])
        att_stmt = raw.get("attStmt", {})
    except (WebAuthnException, ValueError, KeyError, TypeError, AttributeError) as exc:
        msg = f"Attestation object is malformed: {exc}"
        raise AttestationSignatureInvalid(msg) from exc
    if not isinstance(fmt, str) or not isinstance(att_stmt, dict):
        msg = "Attestation object has an invalid fmt or attStmt"
        raise AttestationSignatureInvalid(msg)
    return fmt, auth_data, att_stmt


def _attestation_type(fmt: str, att_stmt: dict[str, Any]) -> AttestationType:
    if fmt == AttestationFormat.NONE.value:
        return AttestationType.NONE
    if fmt == AttestationFormat.PACKED.value and not att_stmt.get("x5c"):
        return AttestationType.SELF
    return AttestationType.BASIC


def load_attestation_roots(directory: str | Path) -> dict[AttestationFormat, list[bytes]]:
    """Load trusted attestation roots laid out as ``<dir>/<fmt>/*.pem``.

    Unknown subdirectory names are ignored.
    """
    roots: dict[AttestationFormat, list[bytes]] = {}
    base = Path(directory).expanduser()
    for fmt_dir in sorted(p for p in base.iterdir() if p.is_dir()):
        try:
            fmt = AttestationFormat(fmt_dir.name)
        except ValueError:
            logger.warning("attestation_roots_dir_ignored", path=str(fmt_dir))
            continue
        certs = [pem.read_bytes() for pem in sorted(fmt_dir.glob("*.pem"))]
        if certs:
            roots[fmt] = certs
    logger.info("attestation_roots_loaded", formats=[f.value for f in roots])
    return roots
