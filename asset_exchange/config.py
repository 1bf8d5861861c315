import logging
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from asset_exchange.enums import PermittedSynchronization


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    database_url: str = Field(alias="DATABASE_URL")
    operator_id: str = Field(alias="OPERATOR_ID")

    service_name: str = Field(default="asset-exchange", alias="SERVICE_NAME")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    default_permitted_synchronization: PermittedSynchronization = Field(
        default=PermittedSynchronization.both_directions, alias="DEFAULT_PERMITTED_SYNCHRONIZATION"
    )

    @model_validator(mode="after")
    def validate_required_runtime(self) -> "Settings":
        if not self.database_url.strip():
            raise ValueError("DATABASE_URL is required")
        if not self.operator_id.strip():
            raise ValueError("OPERATOR_ID is required")
        if not self.service_name.strip():
            raise ValueError("SERVICE_NAME must not be blank")
        self.log_level = self.log_level.strip().upper()
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ValueError(f"LOG_LEVEL is not a logging level: {self.log_level}")
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
