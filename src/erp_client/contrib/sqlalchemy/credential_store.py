"""SQLAlchemy credential store."""

from __future__ import annotations

import asyncio

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from erp_client.contrib.sqlalchemy.models import CredentialModel
from erp_client.schemas import TokenPair

CREDENTIAL_ROW_ID = 1


class SQLAlchemyCredentialStore:
    """Credentials backed by a single-row SQLAlchemy table."""

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        self.session_factory = session_factory
        self._lock = asyncio.Lock()

    async def load(self) -> TokenPair | None:
        async with self.session_factory() as session:
            row = await session.get(CredentialModel, CREDENTIAL_ROW_ID)
            if row is None:
                return None
            return TokenPair(
                access_token=row.access_token,
                refresh_token=row.refresh_token,
            )

    async def save(self, tokens: TokenPair) -> None:
        async with self._lock, self.session_factory() as session:
            row = await session.get(CredentialModel, CREDENTIAL_ROW_ID)
            if row is None:
                session.add(
                    CredentialModel(
                        id=CREDENTIAL_ROW_ID,
                        access_token=tokens.access_token,
                        refresh_token=tokens.refresh_token,
                    )
                )
            else:
                row.access_token = tokens.access_token
                row.refresh_token = tokens.refresh_token
            await session.commit()

    async def clear(self) -> None:
        async with self._lock, self.session_factory() as session:
            await session.execute(delete(CredentialModel))
            await session.commit()
