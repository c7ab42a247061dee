import asyncio
import io
import logging
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Awaitable, Callable, Sequence

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
from matplotlib import font_manager

from .aggregation import AggregationEngine, RankedTotal
from .errors import AggregationTimeout, RenderError, StorageError
from .messages import Messages
from .sessions import DEFAULT_LIMIT

logger = logging.getLogger(__name__)

MS_PER_HOUR = 3_600_000

# 800x600 px at dpi=100
PLOT_SIZE = (8, 6)
PLOT_DPI = 100

# (fill, edge) per kind
BAR_COLORS = {
    "channel": ((54 / 255, 162 / 255, 235 / 255, 0.5), (54 / 255, 162 / 255, 235 / 255, 1.0)),
    "user": ((255 / 255, 99 / 255, 132 / 255, 0.5), (255 / 255, 99 / 255, 132 / 255, 1.0)),
}

LabelResolver = Callable[[str], Awaitable[str | None]]


class StatKind(str, Enum):
    CHANNEL = "channel"
    USER = "user"


@dataclass(frozen=True)
class Report:
    """What the command replies with: an image, or a plain-text message."""

    text: str | None = None
    image: bytes | None = None
    filename: str | None = None
    rows: list[tuple[str, float]] = field(default_factory=list)


def ms_to_hours(ms: int) -> float:
    return ms / MS_PER_HOUR


@lru_cache(maxsize=None)
def register_font(font_path: str) -> str:
    """Add a TrueType file to matplotlib's font manager once and return its family name."""
    font_manager.fontManager.addfont(font_path)
    return font_manager.FontProperties(fname=font_path).get_name()


async def resolve_labels(keys: Sequence[str], resolver: LabelResolver, placeholder: str) -> list[str]:
    """Look up display names concurrently; a failed or empty lookup yields the placeholder."""

    async def one(key: str) -> str:
        try:
            name = await resolver(key)
        except Exception:
            logger.warning("Label lookup failed for %s", key, exc_info=True)
            return placeholder
        return name or placeholder

    return list(await asyncio.gather(*(one(k) for k in keys)))


def render_bar_chart(
    labels: Sequence[str],
    hours: Sequence[float],
    kind: StatKind,
    messages: Messages,
    font_path: str | None = None,
) -> bytes:
    """Render a labelled bar chart as PNG bytes. Same input, same image."""
    if len(labels) != len(hours):
        raise RenderError(f"{len(labels)} labels for {len(hours)} values")

    rc = {}
    try:
        if font_path:
            rc["font.family"] = register_font(font_path)

        fill, edge = BAR_COLORS[StatKind(kind).value]
        with plt.rc_context(rc):
            fig, ax = plt.subplots(figsize=PLOT_SIZE)
            try:
                x = range(len(labels))
                bars = ax.bar(x, hours, color=fill, edgecolor=edge, linewidth=1, label=messages.chart_dataset)
                ax.bar_label(bars, labels=[f"{h:.2f}{messages.hours_suffix}" for h in hours], fontsize=10)
                ax.set_xticks(list(x))
                ax.set_xticklabels(labels, fontsize=12, rotation=30, ha="right")
                ax.set_ylim(bottom=0)
                ax.set_ylabel(messages.chart_ylabel, fontsize=14)
                ax.set_title(messages.chart_title, fontsize=18)
                ax.legend(fontsize=12)
                fig.tight_layout()

                buf = io.BytesIO()
                fig.savefig(buf, format="png", dpi=PLOT_DPI, metadata={"Software": None})
            finally:
                plt.close(fig)
    except Exception as e:
        raise RenderError(f"could not render {kind} chart: {e}") from e
    return buf.getvalue()


class ReportService:
    """Builds the reply for a statistics request.

    Never raises for expected failures: storage errors, timeouts and render
    errors are logged and turned into a localised text reply.
    """

    def __init__(
        self,
        engine: AggregationEngine,
        channel_resolver: LabelResolver,
        user_resolver: LabelResolver,
        messages: Messages,
        font_path: str | None = None,
        limit: int = DEFAULT_LIMIT,
    ):
        self.engine = engine
        self.channel_resolver = channel_resolver
        self.user_resolver = user_resolver
        self.messages = messages
        self.font_path = font_path
        self.limit = limit

    def error_text(self, kind: StatKind) -> str:
        if kind is StatKind.CHANNEL:
            return self.messages.channel_error
        return self.messages.user_error

    async def build(self, group_id: str, kind: StatKind) -> Report:
        kind = StatKind(kind)
        try:
            ranked = await self._ranked(group_id, kind)
        except (StorageError, AggregationTimeout):
            logger.exception("Failed to aggregate %s stats for guild %s", kind.value, group_id)
            return Report(text=self.error_text(kind))

        if not ranked:
            return Report(text=self.messages.no_data)

        keys = [r.key for r in ranked]
        if kind is StatKind.CHANNEL:
            labels = await resolve_labels(keys, self.channel_resolver, self.messages.unknown_channel)
        else:
            labels = await resolve_labels(keys, self.user_resolver, self.messages.unknown_user)
        hours = [ms_to_hours(r.total_ms) for r in ranked]

        try:
            image = render_bar_chart(labels, hours, kind, self.messages, self.font_path)
        except RenderError:
            logger.exception("Failed to render %s stats for guild %s", kind.value, group_id)
            return Report(text=self.error_text(kind))

        return Report(image=image, filename=f"{kind.value}_stats.png", rows=list(zip(labels, hours)))

    async def _ranked(self, group_id: str, kind: StatKind) -> list[RankedTotal]:
        if kind is StatKind.CHANNEL:
            return await self.engine.top_channels_by_time(group_id, self.limit)
        return await self.engine.top_users_by_time(group_id, self.limit)
