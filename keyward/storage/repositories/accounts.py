"""Account repository, PostgreSQL-backed."""

from __future__ import annotations

from typing import Any

import structlog

from keyward.models.database import Account

logger = structlog.get_logger(__name__)


class DatabaseAccountRepository:
    """Read access to accounts plus creation for bootstrap and tests."""

    def __init__(self, engine: Any) -> None:
        self._engine = engine

    async def create(self, username: str, email: str = "") -> Account:
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            account = Account(username=username, email=email or username)
            session.add(account)
            await session.commit()
            await session.refresh(account)
            logger.info("account_created", account_id=account.id)
            return account

    async def get_by_id(self, account_id: str) -> Account | None:
        from sqlmodel import col, select
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            stmt = select(Account).where(col(Account.id) == account_id)
            result = await session.execute(stmt)
            return result.scalars().first()
