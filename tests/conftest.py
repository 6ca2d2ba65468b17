"""Shared test fixtures."""

from __future__ import annotations

import hashlib
import json
import os
from datetime import UTC, datetime, timedelta
from typing import Any

import cbor2
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel import SQLModel
from webauthn.helpers import bytes_to_base64url

import keyward.models.database  # noqa: F401  registers table metadata
from keyward.config.settings import Settings
from keyward.storage.repositories.accounts import DatabaseAccountRepository
from keyward.web.dependencies import build_orchestrator

RP_ID = "localhost"
ORIGIN = "http://localhost:8000"

# Authenticator data flags
_UP = 0x01
_UV = 0x04
_AT = 0x40


def self_signed_certificate(private_key: ec.EllipticCurvePrivateKey) -> bytes:
    """DER certificate for ``private_key``, signed by itself and trusted by nobody."""
    name = x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, "attacker"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Untrusted Keys"),
            x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, "Authenticator Attestation"),
            x509.NameAttribute(NameOID.COUNTRY_NAME, "US"),
        ]
    )
    now = datetime.now(UTC)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .sign(private_key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.DER)


class SoftAuthenticator:
    """Software authenticator producing real WebAuthn attestation responses.

    Uses a fresh P-256 key per credential. ``packed`` responses carry a
    self-attestation signature, or a basic one chained to a self-signed
    certificate when ``x5c`` is set; ``none`` responses carry an empty statement.
    Keyword overrides let tests corrupt exactly one part of the response.
    """

    def __init__(self, rp_id: str = RP_ID, origin: str = ORIGIN) -> None:
        self.rp_id = rp_id
        self.origin = origin

    def register(
        self,
        options: dict[str, Any],
        *,
        fmt: str = "packed",
        credential_id: bytes | None = None,
        challenge: bytes | None = None,
        origin: str | None = None,
        rp_id: str | None = None,
        client_type: str = "webauthn.create",
        sign_count: int = 1,
        tamper_signature: bool = False,
        raw_id: bytes | None = None,
        x5c: bool = False,
    ) -> dict[str, Any]:
        private_key = ec.generate_private_key(ec.SECP256R1())
        numbers = private_key.public_key().public_numbers()
        cose_key = cbor2.dumps(
            {
                1: 2,  # kty: EC2
                3: -7,  # alg: ES256
                -1: 1,  # crv: P-256
                -2: numbers.x.to_bytes(32, "big"),
                -3: numbers.y.to_bytes(32, "big"),
            }
        )
        cred_id = credential_id or os.urandom(32)

        auth_data = (
            hashlib.sha256((rp_id or self.rp_id).encode()).digest()
            + bytes([_UP | _UV | _AT])
            + sign_count.to_bytes(4, "big")
            + bytes(16)  # aaguid
            + len(cred_id).to_bytes(2, "big")
            + cred_id
            + cose_key
        )

        challenge_b64 = (
            bytes_to_base64url(challenge) if challenge is not None else options["challenge"]
        )
        client_data = json.dumps(
            {
                "type": client_type,
                "challenge": challenge_b64,
                "origin": origin or self.origin,
                "crossOrigin": False,
            }
        ).encode()

        att_stmt: dict[str, Any] = {}
        if fmt == "packed":
            signature = private_key.sign(
                auth_data + hashlib.sha256(client_data).digest(), ec.ECDSA(hashes.SHA256())
            )
            if tamper_signature:
                signature = signature[:-1] + bytes([signature[-1] ^ 0x01])
            att_stmt = {"alg": -7, "sig": signature}
            if x5c:
                att_stmt["x5c"] = [self_signed_certificate(private_key)]

        attestation_object = cbor2.dumps({"fmt": fmt, "attStmt": att_stmt, "authData": auth_data})
        rid = bytes_to_base64url(raw_id or cred_id)
        return {
            "id": rid,
            "rawId": rid,
            "type": "public-key",
            "authenticatorAttachment": "cross-platform",
            "clientExtensionResults": {},
            "response": {
                "clientDataJSON": bytes_to_base64url(client_data),
                "attestationObject": bytes_to_base64url(attestation_object),
                "transports": ["usb"],
            },
        }


@pytest.fixture()
def authenticator() -> SoftAuthenticator:
    return SoftAuthenticator()


@pytest.fixture()
def settings() -> Settings:
    """Settings pinned for tests, independent of the environment."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        secret_key="test-secret",
        rp_id=RP_ID,
        rp_name="keyward tests",
        allowed_origins=[ORIGIN],
        challenge_ttl_seconds=600,
    )


@pytest.fixture()
async def async_engine():
    """In-memory SQLite engine with all tables created."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
async def account(async_engine):
    return await DatabaseAccountRepository(async_engine).create(
        username="alice", email="alice@example.com"
    )


@pytest.fixture()
def orchestrator(settings, async_engine):
    return build_orchestrator(settings, async_engine)


@pytest.fixture()
def unrelated_root_pem() -> bytes:
    """A PEM root certificate that no test authenticator chains to."""
    der = self_signed_certificate(ec.generate_private_key(ec.SECP256R1()))
    return x509.load_der_x509_certificate(der).public_bytes(serialization.Encoding.PEM)
