"""
Tests for label resolution, chart rendering and the report service.
"""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import matplotlib
import pytest
from matplotlib import font_manager

from conftest import GUILD, join, leave
from voice_stats.aggregation import AggregationEngine
from voice_stats.errors import RenderError, StorageError
from voice_stats.messages import MESSAGES, get_messages
from voice_stats.report import (
    ReportService,
    StatKind,
    ms_to_hours,
    render_bar_chart,
    resolve_labels,
)

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
EN = MESSAGES["en"]


async def names(key):
    return f"name-{key}"


class TestHelpers:

    def test_ms_to_hours(self):
        assert ms_to_hours(3_600_000) == 1.0
        assert ms_to_hours(5_400_000) == 1.5
        assert ms_to_hours(0) == 0.0

    def test_get_messages(self):
        assert get_messages("ja").no_data == "このサーバーにはまだデータがありません。"
        with pytest.raises(ValueError):
            get_messages("fr")


class TestResolveLabels:

    @pytest.mark.asyncio
    async def test_preserves_order(self):
        assert await resolve_labels(["a", "b"], names, "?") == ["name-a", "name-b"]

    @pytest.mark.asyncio
    async def test_failures_become_placeholder(self):
        """One failed lookup does not abort the others."""

        async def flaky(key):
            if key == "bad":
                raise LookupError(key)
            if key == "blank":
                return None
            return key.upper()

        labels = await resolve_labels(["ok", "bad", "blank"], flaky, "Unknown User")
        assert labels == ["OK", "Unknown User", "Unknown User"]


class TestRenderBarChart:

    def test_produces_png(self):
        image = render_bar_chart(["a", "b"], [1.5, 0.25], StatKind.CHANNEL, EN)
        assert image.startswith(PNG_MAGIC)

    def test_reproducible(self):
        first = render_bar_chart(["x"], [2.0], StatKind.USER, EN)
        second = render_bar_chart(["x"], [2.0], StatKind.USER, EN)
        assert first == second

    def test_mismatched_input(self):
        with pytest.raises(RenderError):
            render_bar_chart(["a"], [1.0, 2.0], StatKind.USER, EN)

    def test_missing_font_is_render_error(self, tmp_path):
        with pytest.raises(RenderError):
            render_bar_chart(["a"], [1.0], StatKind.USER, EN, font_path=str(tmp_path / "nope.ttf"))

    def test_font_registered_once(self):
        font_path = str(Path(matplotlib.get_data_path()) / "fonts" / "ttf" / "DejaVuSans.ttf")
        render_bar_chart(["a"], [1.0], StatKind.USER, EN, font_path=font_path)
        fonts_after_first = len(font_manager.fontManager.ttflist)

        for _ in range(3):
            render_bar_chart(["a"], [1.0], StatKind.USER, EN, font_path=font_path)
        assert len(font_manager.fontManager.ttflist) == fonts_after_first


class TestReportService:

    def make_service(self, engine, channel_resolver=names, user_resolver=names):
        return ReportService(engine, channel_resolver, user_resolver, EN)

    @pytest.mark.asyncio
    async def test_channel_report(self, processor, engine):
        await processor.process(join("C1", "U", 0))
        await processor.process(leave("C1", "U", 7_200_000))

        report = await self.make_service(engine).build(GUILD, StatKind.CHANNEL)
        assert report.image.startswith(PNG_MAGIC)
        assert report.filename == "channel_stats.png"
        assert report.rows == [("name-C1", 2.0)]
        assert report.text is None

    @pytest.mark.asyncio
    async def test_user_report_uses_user_placeholder(self, processor, engine):
        await processor.process(join("C1", "U", 0))
        await processor.process(leave("C1", "U", 1_800_000))
        failing = AsyncMock(side_effect=RuntimeError("gone"))

        report = await self.make_service(engine, user_resolver=failing).build(GUILD, "user")
        assert report.filename == "user_stats.png"
        assert report.rows == [("Unknown User", 0.5)]

    @pytest.mark.asyncio
    async def test_no_data(self, engine):
        report = await self.make_service(engine).build(GUILD, StatKind.USER)
        assert report.image is None
        assert report.text == EN.no_data

    @pytest.mark.asyncio
    async def test_storage_failure_becomes_message(self):
        broken = AsyncMock()
        broken.sum_by_channel.side_effect = StorageError("disk on fire")
        report = await self.make_service(AggregationEngine(broken)).build(GUILD, StatKind.CHANNEL)
        assert report.image is None
        assert report.text == EN.channel_error

    @pytest.mark.asyncio
    async def test_timeout_becomes_message(self):
        class SlowStore:
            async def sum_by_user(self, group_id, limit):
                await asyncio.sleep(1)
                return [("u", 1)]

        engine = AggregationEngine(SlowStore(), timeout=0.01)
        report = await self.make_service(engine).build(GUILD, StatKind.USER)
        assert report.image is None
        assert report.text == EN.user_error

    @pytest.mark.asyncio
    async def test_render_failure_becomes_message(self, processor, engine, monkeypatch):
        await processor.process(join("C1", "U", 0))
        await processor.process(leave("C1", "U", 1000))

        def explode(*args, **kwargs):
            raise RenderError("no canvas")

        monkeypatch.setattr("voice_stats.report.render_bar_chart", explode)
        report = await self.make_service(engine).build(GUILD, StatKind.USER)
        assert report.text == EN.user_error
