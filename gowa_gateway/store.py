"""SQLite credential store for device records."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import Field, SQLModel, select

from .errors import DeviceError, StorageError

_LOGGER = logging.getLogger(__name__)


class DeviceRecord(SQLModel, table=True):
    """Persisted pairing material for one linked device."""

    __tablename__ = "devices"

    id: Optional[int] = Field(default=None, primary_key=True)
    device_id: str = Field(
        default_factory=lambda: uuid4().hex, index=True, unique=True, max_length=64
    )
    jid: Optional[str] = Field(default=None, max_length=255)
    auth_token: Optional[str] = Field(default=None, max_length=4096)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CredentialStore:
    """Durable mapping from device identity to authentication material.

    Usage:
        store = await CredentialStore.open(path)
        device = await store.get_first_device() or store.new_device()
        await store.save_device(device)
        await store.close()
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._session_factory = async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )

    @classmethod
    async def open(cls, path: Path) -> "CredentialStore":
        """Open or create the store at ``path``.

        Raises:
            StorageError: If the database cannot be opened or initialised.
        """
        engine = create_async_engine(f"sqlite+aiosqlite:///{path}")
        try:
            async with engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)
        except SQLAlchemyError as err:
            await engine.dispose()
            raise StorageError(f"failed to open credential store {path}: {err}") from err
        _LOGGER.debug("Credential store opened at %s", path)
        return cls(engine)

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            yield session

    async def get_first_device(self) -> Optional[DeviceRecord]:
        """Return the oldest stored device, or None when nothing is stored."""
        try:
            async with self._session() as session:
                result = await session.execute(
                    select(DeviceRecord).order_by(DeviceRecord.id)
                )
                return result.scalars().first()
        except SQLAlchemyError as err:
            raise DeviceError(f"failed to get device: {err}") from err

    def new_device(self) -> DeviceRecord:
        """Create an unpaired device record. It is persisted once pairing succeeds."""
        return DeviceRecord()

    async def save_device(self, device: DeviceRecord) -> None:
        try:
            async with self._session() as session:
                session.add(device)
                await session.commit()
                await session.refresh(device)
        except SQLAlchemyError as err:
            raise DeviceError(f"failed to save device: {err}") from err

    async def clear_identity(self, device: DeviceRecord) -> None:
        """Forget the identity and auth material of ``device``."""
        device.jid = None
        device.auth_token = None
        if device.id is not None:
            await self.save_device(device)

    async def close(self) -> None:
        await self._engine.dispose()
