from pathlib import Path
from urllib.parse import urlparse

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # SoulSync backend API
    SOULSYNC_API_URL: str = "http://localhost:5000/api"
    API_REQUEST_TIMEOUT: float = 30.0
    API_MAX_RETRIES: int = 2
    API_BACKOFF_FACTOR: float = 0.5

    # Tokens used by the worker CLI (the HTTP surface reads them from headers)
    SOULSYNC_ACCESS_TOKEN: str | None = None
    SOULSYNC_REFRESH_TOKEN: str | None = None

    # =================================================================
    # IMPORT POLLING
    # =================================================================
    IMPORT_POLL_INTERVAL_SECONDS: float = 1.5
    IMPORT_STALL_WARNING_SECONDS: float = 120.0  # flag as "still working"
    IMPORT_POLL_TIMEOUT_SECONDS: float = 900.0  # 15 minutes, then stop polling

    # Relationship analysis monitor (detailed profile polling)
    ANALYSIS_MONITOR_INTERVAL_SECONDS: float = 3.0
    ANALYSIS_MONITOR_MAX_ATTEMPTS: int = 20
    ANALYSIS_REFRESH_MAX_ATTEMPTS: int = 10

    # Redis settings
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 20
    REFRESH_FLAG_TTL_SECONDS: int = 7 * 24 * 3600
    SESSION_FLAG_TTL_SECONDS: int = 12 * 3600
    TOKEN_TTL_SECONDS: int = 30 * 24 * 3600

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def api_base_url(self) -> str:
        """Backend base URL without a trailing slash."""
        return self.SOULSYNC_API_URL.rstrip("/")

    def api_host(self) -> str | None:
        """
        Host part of the backend URL, e.g.
        http://localhost:5000/api -> localhost
        """
        try:
            return urlparse(self.SOULSYNC_API_URL).hostname
        except Exception:
            return None

    def get_poll_config(self) -> dict:
        """
        Get import polling configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "interval": self.IMPORT_POLL_INTERVAL_SECONDS,
            "stall_after": self.IMPORT_STALL_WARNING_SECONDS,
            "timeout": self.IMPORT_POLL_TIMEOUT_SECONDS,
        }

        if self.environment == "development":
            # Local backends finish quickly; surface stuck jobs sooner
            config.update(
                {
                    "stall_after": min(self.IMPORT_STALL_WARNING_SECONDS, 60.0),
                }
            )

        return config


settings = Settings()
