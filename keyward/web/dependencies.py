"""FastAPI dependency injection and shared state."""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING, Any

import structlog

from keyward.config.settings import Settings, get_settings
from keyward.registration.challenge_store import (
    ChallengeStore,
    DatabaseChallengeStore,
    InMemoryChallengeStore,
)
from keyward.registration.issuer import ChallengeIssuer
from keyward.registration.orchestrator import RegistrationOrchestrator
from keyward.registration.verifier import AttestationVerifier, load_attestation_roots
from keyward.storage.repositories.accounts import DatabaseAccountRepository
from keyward.storage.repositories.security_keys import DatabaseSecurityKeyRepository
from keyward.types import ChallengeStoreBackend

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)


def create_challenge_store(settings: Settings, engine: AsyncEngine | Any) -> ChallengeStore:
    """Create the challenge store selected by settings."""
    if settings.challenge_store == ChallengeStoreBackend.DATABASE:
        return DatabaseChallengeStore(engine)
    return InMemoryChallengeStore()


def build_orchestrator(settings: Settings, engine: AsyncEngine | Any) -> RegistrationOrchestrator:
    """Wire the registration ceremony from settings and a database engine."""
    roots = None
    if settings.attestation_roots_dir:
        roots = load_attestation_roots(settings.attestation_roots_dir)

    logger.info(
        "registration_configured",
        rp_id=settings.rp_id,
        challenge_store=str(settings.challenge_store),
        formats=settings.accepted_attestation_formats,
    )
    return RegistrationOrchestrator(
        account_repo=DatabaseAccountRepository(engine),
        security_key_repo=DatabaseSecurityKeyRepository(engine),
        challenge_store=create_challenge_store(settings, engine),
        issuer=ChallengeIssuer(settings),
        verifier=AttestationVerifier(settings, roots),
        challenge_ttl_seconds=settings.challenge_ttl_seconds,
    )


@lru_cache
def get_registration_orchestrator() -> RegistrationOrchestrator:
    from keyward.storage.database import get_engine

    return build_orchestrator(get_settings(), get_engine())


@lru_cache
def get_security_key_repo() -> DatabaseSecurityKeyRepository:
    from keyward.storage.database import get_engine

    return DatabaseSecurityKeyRepository(get_engine())
