from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncSettings(BaseSettings):
    shop_domain: str = ""
    access_token: str = ""
    api_version: str = "2025-01"

    request_timeout_seconds: float = 30.0
    max_fetch_retries: int = Field(default=2, ge=0)
    retry_backoff_seconds: float = Field(default=0.6, ge=0.0)

    poll_interval_seconds: float = Field(default=2.0, ge=0.0)
    poll_timeout_seconds: float = Field(default=1800.0, gt=0.0)
    cancel_settle_seconds: float = Field(default=3.0, ge=0.0)

    batch_size: int = Field(default=1, ge=1)
    variants_page_size: int = Field(default=250, ge=1, le=250)
    levels_page_size: int = Field(default=50, ge=1, le=250)

    model_config = SettingsConfigDict(env_file=".env", env_prefix="STOCKSYNC_")

    @property
    def graphql_url(self) -> str:
        return f"https://{self.shop_domain}/admin/api/{self.api_version}/graphql.json"


@lru_cache
def get_settings() -> SyncSettings:
    return SyncSettings()
