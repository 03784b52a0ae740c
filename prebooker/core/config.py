from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    PREBOOKING_SECRET: str = ""
    TOKEN_MAX_LATE_SECONDS: int = 600

    EARLY_TRIGGER_OFFSET_SECONDS: float = 5.0
    SESSION_STALENESS_MINUTES: float = 25.0
    BACKGROUND_REFRESH_MINUTES: float = 20.0
    MAX_EXECUTION_SECONDS: float = 10.0
    SPIN_THRESHOLD_MS: float = 15.0

    BATCH_STAGGER_MS: int = 50
    BATCH_WINDOW_SECONDS: float = 0.0

    MAX_PENDING_PREBOOKINGS: int = 15
    # JSON list in the environment; these users bypass the pending limit.
    ADMIN_USER_REFS: list[str] = []

    DEFAULT_TIMEZONE: str = "Europe/Madrid"
    # JSON object in the environment, e.g. {"crossfitcerdanyola300": "Europe/Madrid"}
    VENUE_TIMEZONES: dict[str, str] = {}

    CRON_SECRET: str = ""

    QSTASH_TOKEN: str | None = None
    QSTASH_URL: str = "https://qstash.upstash.io"
    CALLBACK_BASE_URL: str = "http://localhost:8000"

    UPSTREAM_MODE: str = "live"  # "live" | "mock"
    UPSTREAM_TIMEOUT_SECONDS: float = 8.0
    UPSTREAM_BOOKING_URL_TEMPLATE: str = "https://{venue}.aimharder.com"
    UPSTREAM_REFRESH_URL: str = "https://aimharder.com/api/tokenUpdate"
    UPSTREAM_FINGERPRINT: str = ""
    UPSTREAM_USER_AGENT: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/140.0.0.0 Safari/537.36"
    )

    STORE_PROVIDER: str = "json"  # "json" | "memory"
    STORE_DATA_DIR: str = "./data"

    def is_admin(self, user_ref: str) -> bool:
        return user_ref in self.ADMIN_USER_REFS

    def timezone_for_venue(self, venue_ref: str | None) -> str:
        if venue_ref and venue_ref in self.VENUE_TIMEZONES:
            return self.VENUE_TIMEZONES[venue_ref]
        return self.DEFAULT_TIMEZONE


settings = Settings()
