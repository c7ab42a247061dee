import logging
from dataclasses import dataclass

from .db import Database

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10


@dataclass(frozen=True)
class ChannelUserSession:
    channel_id: str
    user_id: str
    total_time_ms: int
    last_join: int | None = None

    @property
    def is_open(self) -> bool:
        return self.last_join is not None


class SessionStore:
    """Accumulated voice time per (channel, user).

    ``total_time`` only ever grows by completed sessions; ``last_join`` is set
    while a session is open and cleared when it is closed. Rows are never
    deleted.
    """

    def __init__(self, db: Database):
        self.db = db

    async def get_session(self, channel_id: str, user_id: str) -> ChannelUserSession | None:
        row = await self.db.fetchone(
            "SELECT channel_id, user_id, total_time, last_join FROM channel_user_time "
            "WHERE channel_id = ? AND user_id = ?",
            (channel_id, user_id),
        )
        return ChannelUserSession(*row) if row else None

    async def upsert_open_session(self, channel_id: str, user_id: str, timestamp: int) -> None:
        async with self.db.transaction() as cx:
            async with cx.execute(
                "SELECT total_time FROM channel_user_time WHERE channel_id = ? AND user_id = ?",
                (channel_id, user_id),
            ) as cur:
                row = await cur.fetchone()

            if row is None:
                await cx.execute(
                    "INSERT INTO channel_user_time(channel_id, user_id, total_time, last_join) "
                    "VALUES(?, ?, 0, ?)",
                    (channel_id, user_id, timestamp),
                )
            else:
                # total_time is left untouched; a re-join only moves last_join.
                await cx.execute(
                    "UPDATE channel_user_time SET last_join = ? WHERE channel_id = ? AND user_id = ?",
                    (timestamp, channel_id, user_id),
                )

    async def close_session(self, channel_id: str, user_id: str, timestamp: int) -> int | None:
        """Close the open session and return the milliseconds added, or None if nothing was open."""
        async with self.db.transaction() as cx:
            async with cx.execute(
                "SELECT total_time, last_join FROM channel_user_time "
                "WHERE channel_id = ? AND user_id = ?",
                (channel_id, user_id),
            ) as cur:
                row = await cur.fetchone()

            if row is None:
                return None
            total_time, last_join = row
            if last_join is None:
                return None

            duration = timestamp - last_join
            if duration < 0:
                logger.warning(
                    "Leave at %s precedes join at %s for channel=%s user=%s; clamping to 0",
                    timestamp, last_join, channel_id, user_id,
                )
                duration = 0

            await cx.execute(
                "UPDATE channel_user_time SET total_time = ?, last_join = NULL "
                "WHERE channel_id = ? AND user_id = ?",
                (total_time + duration, channel_id, user_id),
            )
            return duration

    async def discard_open_session(self, channel_id: str, user_id: str, opened_before: int | None = None) -> bool:
        """Clear last_join without accumulating anything. Returns True if a session was open.

        With ``opened_before``, only a session that started strictly earlier is
        cleared; one opened at or after that time is left alone.
        """
        sql = (
            "UPDATE channel_user_time SET last_join = NULL "
            "WHERE channel_id = ? AND user_id = ? AND last_join IS NOT NULL"
        )
        params: tuple = (channel_id, user_id)
        if opened_before is not None:
            sql += " AND last_join < ?"
            params += (opened_before,)
        async with self.db.transaction() as cx:
            async with cx.execute(sql, params) as cur:
                return cur.rowcount > 0

    async def open_sessions(self, group_id: str) -> list[ChannelUserSession]:
        rows = await self.db.fetchall(
            """
            SELECT channel_id, user_id, total_time, last_join
            FROM channel_user_time
            WHERE last_join IS NOT NULL
              AND channel_id IN (SELECT id FROM channels WHERE guild_id = ?)
            """,
            (group_id,),
        )
        return [ChannelUserSession(*r) for r in rows]

    async def sum_by_channel(self, group_id: str, limit: int = DEFAULT_LIMIT) -> list[tuple[str, int]]:
        return await self._sum_by("channel_id", group_id, limit)

    async def sum_by_user(self, group_id: str, limit: int = DEFAULT_LIMIT) -> list[tuple[str, int]]:
        return await self._sum_by("user_id", group_id, limit)

    async def _sum_by(self, column: str, group_id: str, limit: int) -> list[tuple[str, int]]:
        # Only the closed accumulator is summed; open sessions count once they end.
        rows = await self.db.fetchall(
            f"""
            SELECT {column}, SUM(total_time) AS total
            FROM channel_user_time
            WHERE channel_id IN (SELECT id FROM channels WHERE guild_id = ?)
            GROUP BY {column}
            ORDER BY total DESC
            LIMIT ?
            """,
            (group_id, limit),
        )
        return [(key, int(total or 0)) for key, total in rows]
