from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    CONSUL_URL: str = "http://localhost:8500"
    CONSUL_TOKEN: Optional[str] = None
    NAMESPACE: Optional[str] = None

    CLOUD_PROVIDER: str = "OnPrem"
    CLOUD_OIDC_PROXY_URL: str = "http://super-proxy.namespace:8080"

    LONG_POLL_WAIT_SEC: float = 540.0
    LONG_POLL_RETRY_MS: int = 20_000
    LONG_POLL_BACKOFF_MIN_MS: int = 1_000
    LONG_POLL_BACKOFF_MAX_MS: int = 30_000

    WRITER_MAX_ATTEMPTS: int = 5
    WRITER_INITIAL_DELAY_MS: int = 3_000
    WRITER_MAX_DELAY_MS: int = 30_000

    TARGET_NAME: str = "composite-structure"
    TARGET_DATA_KEY: str = "data"

    MANAGEMENT_CHECK_INTERVAL_SEC: float = 300.0

    METRICS_PORT: Optional[int] = None

    @property
    def metrics_enabled(self) -> bool:
        return bool(self.METRICS_PORT)

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    return Settings()
