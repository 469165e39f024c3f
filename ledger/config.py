"""Application configuration using pydantic settings with structured sections."""

import logging
from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class QRSettings(BaseModel):
    ttl_hours: int = Field(default=24, gt=0)
    error_correction: Literal["L", "M", "Q", "H"] = "H"
    border: int = 1
    box_size: int = 10

    @property
    def ttl(self) -> timedelta:
        return timedelta(hours=self.ttl_hours)


class LedgerSettings(BaseModel):
    signup_bonus_points: int = Field(default=100, ge=0)
    default_gym_points_required: int = Field(default=10, ge=0)
    max_conflict_retries: int = Field(default=3, ge=0)


class Settings(BaseSettings):
    """Top-level application settings with nested sections."""

    model_config = SettingsConfigDict(
        env_prefix="GYMPOINTS_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    environment: Literal["development", "staging", "production", "test"] = "development"
    debug: bool = False
    project_name: str = "Gym Points Ledger API"
    api_prefix: str = "/api"
    log_level: str = "INFO"

    qr: QRSettings = QRSettings()
    ledger: LedgerSettings = LedgerSettings()


@lru_cache()
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
