import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable

import aiosqlite

from .errors import StorageError

logger = logging.getLogger(__name__)

SCHEMA = """
PRAGMA journal_mode = WAL;
CREATE TABLE IF NOT EXISTS channel_user_time (
  channel_id TEXT NOT NULL,
  user_id TEXT NOT NULL,
  total_time INTEGER NOT NULL DEFAULT 0,
  last_join INTEGER,
  PRIMARY KEY (channel_id, user_id)
);
CREATE TABLE IF NOT EXISTS channels (
  id TEXT PRIMARY KEY,
  guild_id TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_channels_guild ON channels(guild_id);
"""


class Database:
    """Shared aiosqlite connection with an explicit open/close lifecycle.

    Writers go through :meth:`transaction`, which commits on success, rolls
    back on any exception and serialises transactions on the one connection.
    Readers use :meth:`fetchall` / :meth:`fetchone` and never take the lock.
    """

    def __init__(self, path: str):
        self.path = path
        self._cx: aiosqlite.Connection | None = None
        self._tx_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._cx is not None

    async def open(self) -> None:
        if self._cx is not None:
            return
        try:
            cx = await aiosqlite.connect(self.path)
        except aiosqlite.Error as e:
            raise StorageError(f"could not open database {self.path!r}: {e}") from e
        try:
            await cx.executescript(SCHEMA)
            await cx.commit()
        except aiosqlite.Error as e:
            await cx.close()
            raise StorageError(f"could not initialise schema in {self.path!r}: {e}") from e
        self._cx = cx
        logger.info("Database opened at %s", self.path)

    async def close(self) -> None:
        if self._cx is None:
            return
        cx, self._cx = self._cx, None
        try:
            await cx.close()
        except aiosqlite.Error as e:
            raise StorageError(f"error while closing database: {e}") from e
        logger.info("Database closed")

    async def __aenter__(self) -> "Database":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _connection(self) -> aiosqlite.Connection:
        if self._cx is None:
            raise StorageError("database is not open")
        return self._cx

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        cx = self._connection()
        async with self._tx_lock:
            try:
                yield cx
                await cx.commit()
            except aiosqlite.Error as e:
                await self._rollback(cx)
                raise StorageError(str(e)) from e
            except BaseException:
                await self._rollback(cx)
                raise

    async def _rollback(self, cx: aiosqlite.Connection) -> None:
        try:
            await cx.rollback()
        except aiosqlite.Error:
            logger.exception("Rollback failed")

    async def fetchall(self, sql: str, params: Iterable = ()) -> list[tuple]:
        cx = self._connection()
        try:
            async with cx.execute(sql, tuple(params)) as cur:
                rows = await cur.fetchall()
        except aiosqlite.Error as e:
            raise StorageError(str(e)) from e
        return [tuple(r) for r in rows]

    async def fetchone(self, sql: str, params: Iterable = ()) -> tuple | None:
        cx = self._connection()
        try:
            async with cx.execute(sql, tuple(params)) as cur:
                row = await cur.fetchone()
        except aiosqlite.Error as e:
            raise StorageError(str(e)) from e
        return tuple(row) if row is not None else None
