from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

from signwatch.anomaly.travel import DetectionConfig


class Settings(BaseSettings):
    APP_ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str

    # detection (tanımsızsa uygulama açılmasın)
    IMPOSSIBLE_TRAVEL_SPEED_THRESHOLD: float
    REGION_CHANGE_IGNORE_KM: float

    RETENTION_DAYS: int = 180
    GEO_CACHE_TTL_DAYS: int = 90
    ALERT_LOG_RETENTION_DAYS: int = 14

    WORKER_COUNT: int = 4
    NOTIFY_PER_USER: bool = True
    INGEST_INTERVAL_MINUTES: int = 15

    IP_GEOLOCATION_API_URL: str = "http://ip-api.com/json/"
    GEO_TIMEOUT_SEC: float = 5.0

    AZURE_TENANT_ID: str = ""
    AZURE_CLIENT_ID: str = ""
    AZURE_CLIENT_SECRET: str = ""
    GRAPH_BASE_URL: str = "https://graph.microsoft.com/v1.0"
    GRAPH_LOGIN_URL: str = "https://login.microsoftonline.com"
    SIGNIN_PAGE_SIZE: int = 500

    ALERT_SINKS: str = "stdout"
    ALERT_FILE_PATH: str = "./alerts.log"
    ALERT_WEBHOOK_URLS: str = ""
    ALERT_RETRY_MAX: int = 3
    ALERT_RETRY_BACKOFF_MS: int = 250
    ALERT_KEEP_RECENT: int = 200

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    def sinks(self) -> List[str]:
        return [s.strip() for s in self.ALERT_SINKS.split(",") if s.strip()]

    def webhook_urls(self) -> List[str]:
        return [u.strip() for u in self.ALERT_WEBHOOK_URLS.split(",") if u.strip()]

    def detection_config(self) -> DetectionConfig:
        return DetectionConfig(
            speed_threshold_kph=self.IMPOSSIBLE_TRAVEL_SPEED_THRESHOLD,
            region_change_ignore_km=self.REGION_CHANGE_IGNORE_KM,
        )

    def provider_configured(self) -> bool:
        return bool(self.AZURE_TENANT_ID and self.AZURE_CLIENT_ID and self.AZURE_CLIENT_SECRET)


def get_settings() -> Settings:
    return Settings()
