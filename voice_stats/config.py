import os
from dataclasses import dataclass

from dotenv import find_dotenv, load_dotenv

DEFAULT_DB_PATH = "voice_channel_time.db"
DEFAULT_QUERY_TIMEOUT = 10.0
SUPPORTED_LOCALES = ("ja", "en")


@dataclass(frozen=True)
class Settings:
    token: str | None
    guild_id: int | None = None
    db_path: str = DEFAULT_DB_PATH
    chart_font_path: str | None = None
    locale: str = "ja"
    query_timeout: float = DEFAULT_QUERY_TIMEOUT
    log_level: str = "INFO"


def _int_env(name: str) -> int | None:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


def load_settings(dotenv: bool = True) -> Settings:
    """Read settings from the environment, loading `.env` first when asked."""
    if dotenv:
        load_dotenv(find_dotenv(usecwd=True))

    locale = os.getenv("LOCALE", "ja").strip().lower() or "ja"
    if locale not in SUPPORTED_LOCALES:
        raise ValueError(f"LOCALE must be one of {SUPPORTED_LOCALES}, got {locale!r}")

    return Settings(
        token=os.getenv("DISCORD_TOKEN") or None,
        guild_id=_int_env("GUILD_ID"),
        db_path=os.getenv("DB_PATH", DEFAULT_DB_PATH).strip() or DEFAULT_DB_PATH,
        chart_font_path=os.getenv("CHART_FONT_PATH", "").strip() or None,
        locale=locale,
        query_timeout=_float_env("QUERY_TIMEOUT", DEFAULT_QUERY_TIMEOUT),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )
