"""Security key repository, PostgreSQL-backed.

``create_from_source`` is the persistence step of the registration
ceremony: the credential source and its named security key are written in
one transaction, so no reader ever sees a key without its name.
"""

from __future__ import annotations

import base64
import json
from typing import Any

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from keyward.exceptions import DuplicateCredential, PersistenceFailure
from keyward.models.database import CredentialSource, SecurityKey
from keyward.models.domain import VerifiedCredential

logger = structlog.get_logger(__name__)


def encode_public_key_id(credential_id: bytes) -> str:
    """Standard (padded) base64 of a raw credential id."""
    return base64.b64encode(credential_id).decode("ascii")


class DatabaseSecurityKeyRepository:
    """PostgreSQL-backed credential and security key store."""

    def __init__(self, engine: Any) -> None:
        self._engine = engine

    async def create_from_source(
        self, account_id: str, source: VerifiedCredential, name: str
    ) -> SecurityKey:
        """Persist a verified credential and its security key, returning the key."""
        from sqlmodel import col, select
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            try:
                stmt = select(CredentialSource.id).where(
                    col(CredentialSource.credential_id) == source.credential_id
                )
                if (await session.execute(stmt)).first() is not None:
                    msg = "Credential id is already registered"
                    raise DuplicateCredential(msg)

                credential = CredentialSource(
                    account_id=account_id,
                    credential_id=source.credential_id,
                    public_key=source.public_key,
                    sign_count=source.sign_count,
                    attestation_type=source.attestation_type.value,
                    attestation_format=source.attestation_format,
                    transports=json.dumps(source.transports),
                    aaguid=source.aaguid,
                    user_handle=source.user_handle,
                    device_type=source.device_type,
                    backed_up=source.backed_up,
                )
                session.add(credential)
                await session.flush()  # populate credential.id without committing

                key = SecurityKey(
                    account_id=account_id,
                    credential_source_id=credential.id,
                    public_key_id=encode_public_key_id(source.credential_id),
                    name=name,
                )
                session.add(key)
                await session.commit()
                await session.refresh(key)
            except IntegrityError as exc:
                await session.rollback()
                if await self.credential_exists(source.credential_id):
                    msg = "Credential id is already registered"
                    raise DuplicateCredential(msg) from exc
                raise PersistenceFailure(str(exc)) from exc
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceFailure(str(exc)) from exc

            logger.info("security_key_created", account_id=account_id, key_id=key.id)
            return key

    async def credential_exists(self, credential_id: bytes) -> bool:
        from sqlmodel import col, select
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            stmt = select(CredentialSource.id).where(
                col(CredentialSource.credential_id) == credential_id
            )
            result = await session.execute(stmt)
            return result.first() is not None

    async def credential_ids_for_account(self, account_id: str) -> list[bytes]:
        from sqlmodel import col, select
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            stmt = select(CredentialSource.credential_id).where(
                col(CredentialSource.account_id) == account_id
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_for_account(self, account_id: str) -> list[SecurityKey]:
        from sqlmodel import col, select
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            stmt = (
                select(SecurityKey)
                .where(col(SecurityKey.account_id) == account_id)
                .order_by(col(SecurityKey.id))
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def delete(self, account_id: str, key_id: int) -> bool:
        """Remove a key and its credential source. Returns False if not owned/found."""
        from sqlmodel import col, select
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            stmt = select(SecurityKey).where(
                col(SecurityKey.id) == key_id, col(SecurityKey.account_id) == account_id
            )
            key = (await session.execute(stmt)).scalars().first()
            if key is None:
                return False
            credential = await session.get(CredentialSource, key.credential_source_id)
            await session.delete(key)
            if credential is not None:
                await session.flush()
                await session.delete(credential)
            await session.commit()
            logger.info("security_key_deleted", account_id=account_id, key_id=key_id)
            return True
