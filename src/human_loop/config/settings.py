"""Runtime settings loaded from environment variables."""

from functools import lru_cache
from typing import Annotated

from pydantic import Field, HttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict

NonEmptyStr = Annotated[str, Field(min_length=1)]
PositiveFloat = Annotated[float, Field(gt=0.0)]
PositiveInt = Annotated[int, Field(gt=0)]


class Settings(BaseSettings):
    """Environment-driven application settings."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    zulip_server_url: HttpUrl = Field(validation_alias="ZULIP_SERVER_URL")
    zulip_bot_email: NonEmptyStr = Field(validation_alias="ZULIP_BOT_EMAIL")
    zulip_bot_api_key: NonEmptyStr = Field(validation_alias="ZULIP_BOT_API_KEY")
    zulip_stream: NonEmptyStr | None = Field(default=None, validation_alias="ZULIP_STREAM")
    zulip_stream_description: NonEmptyStr | None = Field(
        default=None,
        validation_alias="ZULIP_STREAM_DESCRIPTION",
    )
    zulip_poll_interval_ms: PositiveInt = Field(
        default=5_000,
        validation_alias="ZULIP_POLL_INTERVAL_MS",
    )
    zulip_http_timeout_seconds: PositiveFloat = Field(
        default=90.0,
        validation_alias="ZULIP_HTTP_TIMEOUT_SECONDS",
    )
    zulip_auto_provision: bool = Field(default=True, validation_alias="ZULIP_AUTO_PROVISION")
    zulip_debug: bool = Field(default=False, validation_alias="ZULIP_DEBUG")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    """Load and cache application settings."""

    return Settings()  # type: ignore[call-arg]
