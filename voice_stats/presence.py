import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Hashable, Iterable

from .channels import ChannelRegistry
from .sessions import SessionStore

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    JOIN = "join"
    LEAVE = "leave"
    SWITCH = "switch"
    IGNORED = "ignored"


@dataclass(frozen=True)
class PresenceEvent:
    """A change in a user's voice channel membership."""

    previous_channel_id: str | None
    new_channel_id: str | None
    user_id: str
    group_id: str
    timestamp_ms: int

    @property
    def kind(self) -> EventKind:
        prev, new = self.previous_channel_id, self.new_channel_id
        if prev == new:
            # Covers both-absent and mute/deafen updates inside the same channel.
            return EventKind.IGNORED
        if prev is None:
            return EventKind.JOIN
        if new is None:
            return EventKind.LEAVE
        return EventKind.SWITCH


@dataclass(frozen=True)
class PresenceOutcome:
    kind: EventKind
    duration_applied: int | None = None


class KeyedLock:
    """One asyncio.Lock per key, dropped again once nobody holds or waits on it."""

    def __init__(self):
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: defaultdict[Hashable, int] = defaultdict(int)

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


class PresenceProcessor:
    """Turns presence events into session store and channel registry writes.

    Storage errors propagate to the caller untouched; nothing is retried here.
    """

    def __init__(self, store: SessionStore, registry: ChannelRegistry):
        self.store = store
        self.registry = registry
        self._locks = KeyedLock()

    async def process(self, event: PresenceEvent) -> PresenceOutcome:
        kind = event.kind
        if kind is EventKind.IGNORED:
            return PresenceOutcome(kind)

        duration = None
        if kind in (EventKind.LEAVE, EventKind.SWITCH):
            duration = await self.leave(event.previous_channel_id, event.user_id, event.timestamp_ms)
        if kind in (EventKind.JOIN, EventKind.SWITCH):
            await self.join(event.new_channel_id, event.user_id, event.group_id, event.timestamp_ms)
        return PresenceOutcome(kind, duration)

    async def join(self, channel_id: str, user_id: str, group_id: str, timestamp_ms: int) -> None:
        async with self._locks.hold((channel_id, user_id)):
            await self.registry.register(channel_id, group_id)
            await self.store.upsert_open_session(channel_id, user_id, timestamp_ms)
        logger.debug("join channel=%s user=%s at %s", channel_id, user_id, timestamp_ms)

    async def leave(self, channel_id: str, user_id: str, timestamp_ms: int) -> int | None:
        async with self._locks.hold((channel_id, user_id)):
            duration = await self.store.close_session(channel_id, user_id, timestamp_ms)
        if duration is None:
            logger.debug("leave without open session channel=%s user=%s", channel_id, user_id)
        else:
            logger.debug("leave channel=%s user=%s +%sms", channel_id, user_id, duration)
        return duration

    async def reconcile(
        self,
        group_id: str,
        present: Iterable[tuple[str, str]],
        timestamp_ms: int,
    ) -> tuple[int, int]:
        """Bring stored sessions for a guild in line with who is in voice right now.

        Members present without an open session get one starting at
        ``timestamp_ms``. Open sessions started before ``timestamp_ms`` whose
        member is gone are discarded without adding time, since their leave
        time is unknown.
        Returns ``(opened, discarded)``.
        """
        present = set(present)
        opened = discarded = 0

        for channel_id, user_id in sorted(present):
            session = await self.store.get_session(channel_id, user_id)
            if session is None or not session.is_open:
                await self.join(channel_id, user_id, group_id, timestamp_ms)
                opened += 1

        for session in await self.store.open_sessions(group_id):
            key = (session.channel_id, session.user_id)
            if key in present:
                continue
            async with self._locks.hold(key):
                # A session opened after the snapshot belongs to a live join.
                if await self.store.discard_open_session(*key, opened_before=timestamp_ms):
                    discarded += 1
                    logger.warning(
                        "Discarded stale session channel=%s user=%s opened at %s",
                        session.channel_id, session.user_id, session.last_join,
                    )
        return opened, discarded
