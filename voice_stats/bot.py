import io
import logging
import time

import discord
from discord import app_commands

from .aggregation import AggregationEngine
from .channels import ChannelRegistry
from .config import Settings, load_settings
from .db import Database
from .errors import StorageError
from .messages import get_messages
from .presence import EventKind, PresenceEvent, PresenceProcessor
from .report import ReportService, StatKind
from .retry import retry_async
from .sessions import SessionStore

logger = logging.getLogger(__name__)


# -------- Utils --------
def now_ms() -> int:
    return int(time.time() * 1000)


def presence_event_from_states(
    member: discord.Member,
    before: discord.VoiceState,
    after: discord.VoiceState,
    timestamp_ms: int,
) -> PresenceEvent:
    return PresenceEvent(
        previous_channel_id=str(before.channel.id) if before.channel is not None else None,
        new_channel_id=str(after.channel.id) if after.channel is not None else None,
        user_id=str(member.id),
        group_id=str(member.guild.id),
        timestamp_ms=timestamp_ms,
    )


def present_members(guild: discord.Guild) -> list[tuple[str, str]]:
    """(channel_id, user_id) for everyone currently sitting in a voice or stage channel."""
    pairs = []
    for ch in [*guild.voice_channels, *guild.stage_channels]:
        for m in ch.members:
            pairs.append((str(ch.id), str(m.id)))
    return pairs


# -------- Client --------
class VoiceStatsBot(discord.Client):
    def __init__(self, settings: Settings):
        intents = discord.Intents.default()
        intents.guilds = True
        intents.voice_states = True
        super().__init__(intents=intents)

        self.settings = settings
        self.messages = get_messages(settings.locale)
        self.guild_obj = discord.Object(id=settings.guild_id) if settings.guild_id else None

        self.db = Database(settings.db_path)
        self.store = SessionStore(self.db)
        self.registry = ChannelRegistry(self.db)
        self.processor = PresenceProcessor(self.store, self.registry)
        self.engine = AggregationEngine(self.store, timeout=settings.query_timeout)
        self.reports = ReportService(
            self.engine,
            channel_resolver=self.channel_name,
            user_resolver=self.user_name,
            messages=self.messages,
            font_path=settings.chart_font_path,
        )

        self.tree = app_commands.CommandTree(self)
        self._register_commands()

    # -------- Lifecycle --------
    async def setup_hook(self):
        await self.db.open()
        logger.debug("Commands before sync: %s", [c.name for c in self.tree.get_commands(guild=self.guild_obj)])
        try:
            if self.guild_obj:
                await self.tree.sync(guild=self.guild_obj)
                logger.info("✅ Synced slash commands to guild %s", self.settings.guild_id)
                # The tree holds no global commands, so a global sync clears stale ones.
                await self.tree.sync()
                logger.info("🧹 Cleared global commands")
            else:
                synced = await self.tree.sync()
                logger.info("✅ Synced %d global slash commands", len(synced))
        except discord.HTTPException:
            logger.exception("❌ Slash command sync failed")

    async def close(self):
        try:
            await super().close()
        finally:
            await self.db.close()

    async def on_ready(self):
        ts = now_ms()
        for guild in self.guilds:
            try:
                opened, discarded = await self.processor.reconcile(str(guild.id), present_members(guild), ts)
            except StorageError:
                logger.exception("Could not reconcile voice sessions for guild %s", guild.id)
                continue
            if opened or discarded:
                logger.info("Guild %s: opened %d sessions, discarded %d stale", guild.id, opened, discarded)
        logger.info("Bot online as %s", self.user)

    # -------- Voice tracking --------
    async def on_voice_state_update(self, member: discord.Member, before: discord.VoiceState, after: discord.VoiceState):
        event = presence_event_from_states(member, before, after, now_ms())
        if event.kind is EventKind.IGNORED:
            return
        try:
            await self.processor.process(event)
        except StorageError:
            # The gateway never redelivers, so this is the only trace of the lost update.
            logger.exception(
                "Failed to record %s for user %s (%s -> %s) in guild %s",
                event.kind.value, event.user_id, event.previous_channel_id,
                event.new_channel_id, event.group_id,
            )

    # -------- Label lookups --------
    async def channel_name(self, channel_id: str) -> str | None:
        ch = self.get_channel(int(channel_id))
        if ch is None:
            ch = await self.fetch_channel(int(channel_id))
        return getattr(ch, "name", None)

    async def user_name(self, user_id: str) -> str | None:
        user = self.get_user(int(user_id))
        if user is None:
            user = await self.fetch_user(int(user_id))
        return user.name if user else None

    # -------- Slash commands --------
    def _register_commands(self):
        msgs = self.messages

        @app_commands.command(name="voicestats", description=msgs.command_description)
        @app_commands.guild_only()
        @app_commands.rename(kind="type")
        @app_commands.describe(kind=msgs.type_description)
        @app_commands.choices(kind=[
            app_commands.Choice(name=msgs.choice_channel, value=StatKind.CHANNEL.value),
            app_commands.Choice(name=msgs.choice_user, value=StatKind.USER.value),
        ])
        async def voicestats(inter: discord.Interaction, kind: app_commands.Choice[str]):
            await self.handle_voicestats(inter, kind.value)

        self.tree.add_command(voicestats, guild=self.guild_obj)

    async def handle_voicestats(self, inter: discord.Interaction, kind: str):
        try:
            # Defer right away to avoid 10062 while the chart renders
            await retry_async(self._defer, inter)
            report = await self.reports.build(str(inter.guild_id), StatKind(kind))
            if report.image is not None:
                file = discord.File(io.BytesIO(report.image), filename=report.filename)
                await inter.followup.send(file=file)
            else:
                await inter.followup.send(report.text)
        except Exception:
            logger.exception("Error handling /voicestats type=%s", kind)
            try:
                await inter.followup.send(self.messages.generic_error)
            except discord.HTTPException:
                logger.exception("Error sending error message")

    @staticmethod
    async def _defer(inter: discord.Interaction):
        if not inter.response.is_done():
            await inter.response.defer(thinking=True)


# -------- Run --------
def main():
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    if not settings.token:
        raise SystemExit("DISCORD_TOKEN missing in .env")
    bot = VoiceStatsBot(settings)
    bot.run(settings.token, log_handler=None)


if __name__ == "__main__":
    main()
