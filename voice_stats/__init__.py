"""Voice channel presence-time tracking for Discord guilds."""

__version__ = "1.0.0"
