from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Environment mode: dev or prod
    ENV: Literal["dev", "prod"] = "dev"

    # Database
    DATABASE_URL: str

    # Logging
    LOG_LEVEL: str = "INFO"
    SLACK_WEBHOOK_URL: str | None = None

    # Docs Configuration
    DOCS_ENABLED: bool | None = None  # Override docs setting (None = auto based on ENV)

    # Ownership (Alchemy NFT API on Polygon)
    ALCHEMY_API_KEY: str | None = None
    COURTYARD_CONTRACT_ADDRESS: str = "0x251be3a17af4892035c37ebf5890f4a4d889dcad"
    OWNERSHIP_STALE_SECONDS: int = 60 * 60  # 1 hour
    METADATA_FETCH_TIMEOUT_SECONDS: float = 10.0

    # Catalog (pokemontcg.io)
    POKEMON_TCG_API_KEY: str | None = None
    CATALOG_MIN_SETS: int = 400
    CATALOG_SYNC_ON_STARTUP: bool = True
    CATALOG_PAGE_DELAY_SECONDS: float = 1.1
    CATALOG_MAX_RETRIES: int = 3
    CATALOG_RETRY_DELAY_SECONDS: float = 5.0

    # Pricing sources
    POKEMON_PRICE_TRACKER_API_KEY: str | None = None
    RAPIDAPI_KEY: str | None = None
    JUSTTCG_API_KEY: str | None = None
    TCGDEX_ENABLED: bool = True

    PRICE_TRACKER_CALL_BUDGET: int = 90
    PRICE_TRACKER_DELAY_SECONDS: float = 0.5
    POKEMON_API_CALL_BUDGET: int = 90  # ~100 req/day, keep headroom for on-demand requests
    POKEMON_API_DELAY_SECONDS: float = 0.7
    JUSTTCG_CALL_BUDGET: int = 100
    JUSTTCG_DELAY_SECONDS: float = 0.5
    TCGDEX_CALL_BUDGET: int = 1000
    TCGDEX_DELAY_SECONDS: float = 0.3

    # Pricing policy
    PRICE_TTL_OWNER_SECONDS: int = 12 * 60 * 60  # on-demand, per owner
    PRICE_TTL_SCHEDULED_SECONDS: int = 24 * 60 * 60  # full refresh
    PRICE_BATCH_SIZE: int = 20
    EUR_TO_USD: float = 1.08

    # Scheduled price refresh
    PRICE_REFRESH_ENABLED: bool = True
    PRICE_REFRESH_INTERVAL_SECONDS: int = 12 * 60 * 60  # twice a day

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",  # ignore unrelated keys in local .env
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENV == "prod"

    @property
    def is_development(self) -> bool:
        return self.ENV == "dev"

    @property
    def debug_enabled(self) -> bool:
        """Debug mode is only enabled in development."""
        return self.is_development

    @property
    def contract_address(self) -> str:
        return self.COURTYARD_CONTRACT_ADDRESS.lower()

    @property
    def effective_log_level(self) -> str:
        """Return appropriate log level based on environment."""
        if self.is_production:
            # In production, minimum INFO level (ignore DEBUG)
            return self.LOG_LEVEL if self.LOG_LEVEL.upper() != "DEBUG" else "INFO"
        return self.LOG_LEVEL

    @property
    def docs_enabled(self) -> bool:
        """Swagger/ReDoc docs enabled based on environment or override."""
        if self.DOCS_ENABLED is not None:
            return self.DOCS_ENABLED
        return self.is_development


settings = Settings()
