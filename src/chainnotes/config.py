"""
Configuration management using pydantic-settings.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from chainnotes.constants import (
    BLOCKFROST_URLS,
    MIN_OUTPUT_BASE_RESERVE,
    MIN_OUTPUT_FIXED_OVERHEAD,
    NOTE_METADATA_LABEL,
    TTL_SLOTS,
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    network: Literal["mainnet", "preprod", "preview"] = "preview"

    blockfrost_project_id: str = ""
    blockfrost_url: str = ""
    request_timeout: float = 30.0

    # Use the in-process fake indexer instead of Blockfrost
    simulation: bool = False
    simulation_block_interval: float = Field(default=20.0, gt=0)

    database_path: str = "notes.db"

    http_host: str = "127.0.0.1"
    http_port: int = 5000
    cors_origin: str = "*"

    poll_interval: float = Field(default=30.0, gt=0)
    ttl_slots: int = Field(default=TTL_SLOTS, ge=1)
    metadata_label: int = Field(default=NOTE_METADATA_LABEL, ge=0)
    min_output_fixed_overhead: int = Field(default=MIN_OUTPUT_FIXED_OVERHEAD, ge=0)
    min_output_base_reserve: int = Field(default=MIN_OUTPUT_BASE_RESERVE, ge=0)

    log_level: str = "INFO"

    def get_blockfrost_url(self) -> str:
        if self.blockfrost_url:
            return self.blockfrost_url.rstrip("/")
        return BLOCKFROST_URLS[self.network]


def get_settings() -> Settings:
    return Settings()
