class VoiceStatsError(Exception):
    """Base class for errors raised by voice_stats."""


class StorageError(VoiceStatsError):
    """A read or write against the session store or channel registry failed."""


class AggregationTimeout(VoiceStatsError):
    """An aggregation query did not finish within the configured timeout."""


class RenderError(VoiceStatsError):
    """Chart generation failed."""
