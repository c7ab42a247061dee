import asyncio
from dataclasses import dataclass
from typing import Awaitable

from .config import DEFAULT_QUERY_TIMEOUT
from .errors import AggregationTimeout
from .sessions import DEFAULT_LIMIT, SessionStore


@dataclass(frozen=True)
class RankedTotal:
    key: str
    total_ms: int


class AggregationEngine:
    """Read-only top-N rankings of accumulated voice time within a guild.

    Totals are raw milliseconds of completed sessions. Time of sessions that
    are still open is not included until the member leaves.
    """

    def __init__(self, store: SessionStore, timeout: float = DEFAULT_QUERY_TIMEOUT):
        self.store = store
        self.timeout = timeout

    async def top_channels_by_time(self, group_id: str, limit: int = DEFAULT_LIMIT) -> list[RankedTotal]:
        _check_limit(limit)
        return await self._bounded(self.store.sum_by_channel(group_id, limit), "channels", group_id)

    async def top_users_by_time(self, group_id: str, limit: int = DEFAULT_LIMIT) -> list[RankedTotal]:
        _check_limit(limit)
        return await self._bounded(self.store.sum_by_user(group_id, limit), "users", group_id)

    async def _bounded(self, query: Awaitable[list[tuple[str, int]]], what: str, group_id: str) -> list[RankedTotal]:
        try:
            rows = await asyncio.wait_for(query, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise AggregationTimeout(
                f"top {what} for guild {group_id} took longer than {self.timeout}s"
            ) from None
        return [RankedTotal(key, total) for key, total in rows]


def _check_limit(limit: int) -> None:
    if limit < 1:
        raise ValueError(f"limit must be at least 1, got {limit}")
