import time
from datetime import datetime, timedelta, timezone
from typing import Optional, Callable, Dict, Tuple
from sqlalchemy import select, insert, update, delete, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace_orders.application.interfaces import KeyValueStore
from marketplace_orders.infrastructure.db_schema import kv_entries_tbl


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store with per-key expiry"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[str, Optional[float]]] = {}

    def _live(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._entries[key]
            return None
        return value

    def _expiry(self, ttl_seconds: Optional[float]) -> Optional[float]:
        return self._clock() + ttl_seconds if ttl_seconds is not None else None

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[float] = None) -> None:
        self._entries[key] = (value, self._expiry(ttl_seconds))

    async def add(self, key: str, value: str, ttl_seconds: Optional[float] = None) -> bool:
        if self._live(key) is not None:
            return False
        self._entries[key] = (value, self._expiry(ttl_seconds))
        return True

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)


class SQLAlchemyKeyValueStore(KeyValueStore):
    """Persistent store shared by every process using the database"""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)
    ):
        self._session_factory = session_factory
        self._clock = clock

    def _expiry(self, ttl_seconds: Optional[float]) -> Optional[datetime]:
        return self._clock() + timedelta(seconds=ttl_seconds) if ttl_seconds is not None else None

    def _not_expired(self):
        return or_(kv_entries_tbl.c.expires_at.is_(None), kv_entries_tbl.c.expires_at > self._clock())

    async def get(self, key: str) -> Optional[str]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(kv_entries_tbl.c.value).where(kv_entries_tbl.c.key == key, self._not_expired())
            )
            return result.scalar_one_or_none()

    async def set(self, key: str, value: str, ttl_seconds: Optional[float] = None) -> None:
        async with self._session_factory() as session:
            expires_at = self._expiry(ttl_seconds)
            result = await session.execute(
                update(kv_entries_tbl)
                .where(kv_entries_tbl.c.key == key)
                .values(value=value, expires_at=expires_at)
            )
            if result.rowcount == 0:
                await session.execute(
                    insert(kv_entries_tbl).values(key=key, value=value, expires_at=expires_at)
                )
            await session.commit()

    async def add(self, key: str, value: str, ttl_seconds: Optional[float] = None) -> bool:
        async with self._session_factory() as session:
            # Drop an expired entry first so the insert below can claim the key
            await session.execute(
                delete(kv_entries_tbl).where(
                    kv_entries_tbl.c.key == key,
                    kv_entries_tbl.c.expires_at.is_not(None),
                    kv_entries_tbl.c.expires_at <= self._clock()
                )
            )
            try:
                await session.execute(
                    insert(kv_entries_tbl).values(key=key, value=value, expires_at=self._expiry(ttl_seconds))
                )
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
            return True

    async def delete(self, key: str) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(kv_entries_tbl).where(kv_entries_tbl.c.key == key))
            await session.commit()
