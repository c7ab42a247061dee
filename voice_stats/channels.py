from .db import Database


class ChannelRegistry:
    """Maps voice channel ids to the guild that owns them."""

    def __init__(self, db: Database):
        self.db = db

    async def register(self, channel_id: str, group_id: str) -> None:
        # Last write wins: a channel moved between guilds follows its newest owner.
        async with self.db.transaction() as cx:
            await cx.execute(
                "INSERT INTO channels(id, guild_id) VALUES(?, ?) "
                "ON CONFLICT(id) DO UPDATE SET guild_id = excluded.guild_id",
                (channel_id, group_id),
            )

    async def channels_of(self, group_id: str) -> set[str]:
        rows = await self.db.fetchall("SELECT id FROM channels WHERE guild_id = ?", (group_id,))
        return {r[0] for r in rows}

    async def group_of(self, channel_id: str) -> str | None:
        row = await self.db.fetchone("SELECT guild_id FROM channels WHERE id = ?", (channel_id,))
        return row[0] if row else None
