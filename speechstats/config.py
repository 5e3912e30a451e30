import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class Settings:
    """Application settings read from environment variables."""

    # Telegram
    bot_token: str = os.getenv("TELEGRAM_BOT_TOKEN", "")

    # Database
    database_url: str = os.getenv(
        "DATABASE_URL", "sqlite+aiosqlite:///./data/speechstats.db"
    )

    # Period keys (day/week/month/year) are derived in this zone
    timezone: str = os.getenv("TIMEZONE", "Asia/Shanghai")

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_dir: str = os.getenv("LOG_DIR", "logs")

    # Caches: sizes are entry counts, TTLs are seconds
    entity_cache_size: int = int(os.getenv("ENTITY_CACHE_SIZE", "500"))
    entity_cache_ttl: float = float(os.getenv("ENTITY_CACHE_TTL", "600"))
    group_cache_size: int = int(os.getenv("GROUP_CACHE_SIZE", "200"))
    group_cache_ttl: float = float(os.getenv("GROUP_CACHE_TTL", "30"))
    ranking_cache_size: int = int(os.getenv("RANKING_CACHE_SIZE", "50"))
    ranking_cache_ttl: float = float(os.getenv("RANKING_CACHE_TTL", "120"))
    global_cache_size: int = int(os.getenv("GLOBAL_CACHE_SIZE", "10"))
    global_cache_ttl: float = float(os.getenv("GLOBAL_CACHE_TTL", "180"))
    archived_cache_ttl: float = float(os.getenv("ARCHIVED_CACHE_TTL", "300"))
    archived_cache_size: int = int(os.getenv("ARCHIVED_CACHE_SIZE", "1000"))

    # Recording
    record_messages: bool = _env_bool("RECORD_MESSAGES", "true")
    count_words: bool = _env_bool("COUNT_WORDS", "true")
    stats_debug_log: bool = _env_bool("STATS_DEBUG_LOG", "false")

    # Defaults for the dashboard/ranking queries
    ranking_default_limit: int = int(os.getenv("RANKING_LIMIT", "20"))
    global_page_size: int = int(os.getenv("GLOBAL_PAGE_SIZE", "9"))


settings = Settings()
