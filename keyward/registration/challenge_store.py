"""Short-lived challenge storage for registration ceremonies."""

from __future__ import annotations

import threading
import time
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Protocol

import structlog
from pydantic import ValidationError
from sqlalchemy import delete
from sqlmodel import col

from keyward.exceptions import UnexpectedCachedPayload
from keyward.models.database import RegistrationChallengeRecord, _utc_now
from keyward.models.domain import PendingRegistration

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)


class ChallengeStore(Protocol):
    """One-time token -> pending registration, with TTL.

    ``pull`` is an atomic get-and-delete: for a given token at most one
    caller ever receives the entry.
    """

    async def put(self, token: str, entry: PendingRegistration, ttl_seconds: int) -> None: ...

    async def pull(self, token: str) -> PendingRegistration | None: ...


class InMemoryChallengeStore:
    """Process-local store with TTL expiry.

    Expired entries are lazily cleaned on ``put`` and ``pull``. A lock guards
    the dict so the store is also safe when shared across worker threads.
    """

    def __init__(self) -> None:
        self._store: dict[str, tuple[PendingRegistration, float]] = {}  # token -> (entry, expires_at)
        self._lock = threading.Lock()

    async def put(self, token: str, entry: PendingRegistration, ttl_seconds: int) -> None:
        with self._lock:
            self._cleanup()
            self._store[token] = (entry, time.time() + ttl_seconds)

    async def pull(self, token: str) -> PendingRegistration | None:
        """Retrieve and delete an entry. Returns None if missing or expired."""
        with self._lock:
            self._cleanup()
            item = self._store.pop(token, None)
        if item is None:
            return None
        entry, expires_at = item
        if time.time() > expires_at:
            return None
        return entry

    def __len__(self) -> int:
        return len(self._store)

    def _cleanup(self) -> None:
        now = time.time()
        expired = [k for k, (_, exp) in self._store.items() if now > exp]
        for k in expired:
            del self._store[k]


class DatabaseChallengeStore:
    """Challenge store backed by the ``registration_challenges`` table.

    Survives restarts and works across processes. ``pull`` is a single
    ``DELETE ... RETURNING`` statement so concurrent pulls race inside the
    database and only one of them sees the row.
    """

    def __init__(self, engine: AsyncEngine | Any) -> None:
        self._engine = engine

    async def put(self, token: str, entry: PendingRegistration, ttl_seconds: int) -> None:
        from sqlmodel.ext.asyncio.session import AsyncSession

        now = _utc_now()
        record = RegistrationChallengeRecord(
            token=token,
            payload=entry.model_dump_json(),
            expires_at=now + timedelta(seconds=ttl_seconds),
        )
        async with AsyncSession(self._engine) as session:
            # Sweep rows left by abandoned ceremonies.
            await session.execute(
                delete(RegistrationChallengeRecord).where(
                    col(RegistrationChallengeRecord.expires_at) < now
                )
            )
            await session.merge(record)
            await session.commit()

    async def pull(self, token: str) -> PendingRegistration | None:
        from sqlmodel.ext.asyncio.session import AsyncSession

        stmt = (
            delete(RegistrationChallengeRecord)
            .where(col(RegistrationChallengeRecord.token) == token)
            .returning(
                col(RegistrationChallengeRecord.payload),
                col(RegistrationChallengeRecord.expires_at),
            )
        )
        async with AsyncSession(self._engine) as session:
            result = await session.execute(stmt)
            row = result.first()
            await session.commit()

        if row is None:
            return None
        payload, expires_at = row
        if _utc_now() > expires_at:
            return None

        try:
            return PendingRegistration.model_validate_json(payload)
        except ValidationError as exc:
            logger.error("challenge_payload_invalid", errors=exc.error_count())
            msg = "Stored challenge does not decode to a pending registration"
            raise UnexpectedCachedPayload(msg) from exc
