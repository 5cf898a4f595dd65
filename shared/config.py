"""Application configuration with startup validation.

All config is validated at import time via pydantic-settings.
Missing or inconsistent values cause an immediate, clear error.
"""

from pydantic import model_validator
from pydantic_settings import BaseSettings

KNOWN_STREAMS = {"BloodGlucose", "Workout"}


class Settings(BaseSettings):
    model_config = {"env_prefix": "UC_", "env_file": ".env"}

    # Embedded store (".nosync" keeps it out of device backups)
    database_url: str = "sqlite+aiosqlite:///./healthcache.nosync.db"
    database_busy_timeout_seconds: float = 5.0

    # Health data provider: only the fixture store ships with the service
    provider_mode: str = "fixture"
    fixture_path: str = ""

    # Caching
    cache_streams: list[str] = ["BloodGlucose", "Workout"]
    autostart_caching: bool = False
    glucose_source_allowlist: list[str] = ["dexcom"]
    last_cache_window_seconds: float = 60.0

    # API
    api_version: str = "v1"
    default_page_limit: int = 25
    max_page_limit: int = 100

    # Retry (store lock contention)
    retry_max_attempts: int = 3
    retry_max_wait_seconds: int = 2

    @model_validator(mode="after")
    def validate_caching_config(self) -> "Settings":
        """Fail fast at startup on unknown streams or an unsupported provider."""
        if self.provider_mode != "fixture":
            raise ValueError(
                f"provider_mode='{self.provider_mode}' is not supported. Must be: fixture"
            )
        unknown = [s for s in self.cache_streams if s not in KNOWN_STREAMS]
        if unknown:
            raise ValueError(
                f"Unknown cache streams: {', '.join(unknown)}. "
                f"Must be one of: {', '.join(sorted(KNOWN_STREAMS))}"
            )
        if not self.glucose_source_allowlist:
            raise ValueError("glucose_source_allowlist must name at least one vendor")
        return self


settings = Settings()
