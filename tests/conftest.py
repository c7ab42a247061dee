"""
Shared fixtures for voice_stats tests.
"""

import pytest
import pytest_asyncio

from voice_stats.aggregation import AggregationEngine
from voice_stats.channels import ChannelRegistry
from voice_stats.db import Database
from voice_stats.presence import PresenceEvent, PresenceProcessor
from voice_stats.sessions import SessionStore

GUILD = "900"
OTHER_GUILD = "901"


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "voice_test.db")


@pytest_asyncio.fixture
async def db(db_path):
    database = Database(db_path)
    await database.open()
    yield database
    await database.close()


@pytest.fixture
def store(db):
    return SessionStore(db)


@pytest.fixture
def registry(db):
    return ChannelRegistry(db)


@pytest.fixture
def processor(store, registry):
    return PresenceProcessor(store, registry)


@pytest.fixture
def engine(store):
    return AggregationEngine(store, timeout=5)


def join(channel, user, ts, guild=GUILD):
    return PresenceEvent(None, channel, user, guild, ts)


def leave(channel, user, ts, guild=GUILD):
    return PresenceEvent(channel, None, user, guild, ts)


def switch(old, new, user, ts, guild=GUILD):
    return PresenceEvent(old, new, user, guild, ts)
