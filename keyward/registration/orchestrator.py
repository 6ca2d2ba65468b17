"""Registration ceremony: begin issues a challenge, finish verifies and persists it."""

from __future__ import annotations

import secrets
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy.exc import SQLAlchemyError

from keyward.exceptions import (
    ExpiredChallenge,
    KeywardError,
    PersistenceFailure,
    UnexpectedCachedPayload,
)
from keyward.models.database import _utc_now
from keyward.models.domain import PendingRegistration
from keyward.types import CeremonyState

if TYPE_CHECKING:
    from keyward.models.database import SecurityKey
    from keyward.registration.challenge_store import ChallengeStore
    from keyward.registration.issuer import ChallengeIssuer
    from keyward.registration.verifier import AttestationVerifier
    from keyward.storage.repositories.accounts import DatabaseAccountRepository
    from keyward.storage.repositories.security_keys import DatabaseSecurityKeyRepository

logger = structlog.get_logger(__name__)

DEFAULT_KEY_NAME = "Security Key"
TOKEN_BYTES = 48  # 64 url-safe characters


class RegistrationOrchestrator:
    """Runs the two-phase security key registration ceremony.

    A token is dead as soon as ``finish`` pulls it, whatever happens next: a
    failed verification never puts the challenge back, so the client has to
    start over with ``begin``.
    """

    def __init__(
        self,
        account_repo: DatabaseAccountRepository,
        security_key_repo: DatabaseSecurityKeyRepository,
        challenge_store: ChallengeStore,
        issuer: ChallengeIssuer,
        verifier: AttestationVerifier,
        challenge_ttl_seconds: int = 600,
    ) -> None:
        self._accounts = account_repo
        self._keys = security_key_repo
        self._challenges = challenge_store
        self._issuer = issuer
        self._verifier = verifier
        self._ttl = challenge_ttl_seconds

    async def begin(self, account_id: str, display_name: str | None = None) -> dict[str, Any]:
        """Issue creation options and park them under a fresh one-time token."""
        try:
            account = await self._accounts.get_by_id(account_id)
            existing = await self._keys.credential_ids_for_account(account_id) if account else []
        except SQLAlchemyError as exc:
            logger.error(
                "registration_begin_failed",
                account_id=account_id,
                reason=PersistenceFailure.reason,
            )
            raise PersistenceFailure(str(exc)) from exc
        try:
            options = self._issuer.issue(account, existing, display_name)
        except KeywardError as exc:
            logger.warning("registration_begin_failed", account_id=account_id, reason=exc.reason)
            raise

        token = secrets.token_urlsafe(TOKEN_BYTES)
        now = _utc_now()
        entry = PendingRegistration(
            token=token,
            account_id=account_id,
            display_name=display_name or "",
            options=options,
            issued_at=now,
            expires_at=now + timedelta(seconds=self._ttl),
        )
        await self._challenges.put(token, entry, self._ttl)
        logger.info(
            "registration_begun",
            account_id=account_id,
            state=CeremonyState.ISSUED,
            excluded=len(existing),
        )
        return {"token": token, "options": options}

    async def finish(
        self,
        account_id: str,
        token: str,
        registration: dict[str, Any] | str,
        name: str | None = None,
    ) -> SecurityKey:
        """Verify the attestation for ``token`` and persist the new security key."""
        state = CeremonyState.ISSUED
        try:
            entry = await self._challenges.pull(token)
            # A token minted for another account is as good as absent.
            if entry is None or entry.account_id != account_id:
                msg = "No pending registration for this token"
                raise ExpiredChallenge(msg)
            state = CeremonyState.CONSUMED

            source = self._verifier.verify(entry.creation_options(), registration)
            state = CeremonyState.VERIFIED

            key = await self._keys.create_from_source(
                account_id, source, _key_name(name, entry.display_name)
            )
        except KeywardError as exc:
            log = (
                logger.error
                if isinstance(exc, UnexpectedCachedPayload | PersistenceFailure)
                else logger.warning
            )
            log(
                "registration_failed",
                account_id=account_id,
                state=state,
                next_state=CeremonyState.FAILED,
                reason=exc.reason,
                error=str(exc),
            )
            raise

        logger.info(
            "registration_completed",
            account_id=account_id,
            state=CeremonyState.PERSISTED,
            key_id=key.id,
        )
        return key


def _key_name(name: str | None, display_name: str) -> str:
    return (name or "").strip() or display_name.strip() or DEFAULT_KEY_NAME
