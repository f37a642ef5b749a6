from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(env_file=".env")

    app_name: str = "ProxyForge"
    debug: bool = False

    database_url: str = "sqlite+aiosqlite:///./data/proxyforge.db"

    # Card catalog (Scryfall)
    catalog_api_base: str = "https://api.scryfall.com"
    bulk_metadata_url: str = "https://api.scryfall.com/bulk-data/all-cards"
    catalog_user_agent: str = "ProxyForge/1.0"
    catalog_data_dir: Path = Path("data/scryfall")

    # Minimum spacing between outbound catalog calls (seconds)
    catalog_min_request_interval: float = 0.08
    catalog_request_timeout: float = 12.0

    # Simultaneous remote lookups vs. simultaneous decklist lines
    remote_concurrency: int = 4
    resolve_concurrency: int = 12

    refresh_interval_seconds: float = 24 * 60 * 60
    auto_refresh: bool = True

    # Tests and offline runs skip the bulk download at startup
    load_catalog_on_startup: bool = True


settings = Settings()


# =============================================================================
# API LIMITS
# =============================================================================

# Search results per request
DEFAULT_SEARCH_LIMIT = 10
MAX_SEARCH_LIMIT = 20

# Printings attached to each search result
MAX_PRINTINGS_PER_CARD = 60
