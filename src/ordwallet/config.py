"""
Configuration management using pydantic-settings.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ordwallet.models import NetworkType
from ordwallet.scripts import ScriptType


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    network: NetworkType = NetworkType.MAINNET

    esplora_url: str = "https://mempool.space/api"
    ord_url: str | None = None
    request_timeout: float = Field(default=30.0, gt=0)

    dust_threshold: int = Field(default=546, ge=0)
    max_fee_iterations: int = Field(default=30, ge=1)
    input_script_type: ScriptType = ScriptType.WRAPPED_SEGWIT

    # Value left on the inscribed sat after the reveal transaction
    brc20_postage: int = Field(default=546, ge=0)
    brc20_reveal_service_fee: int = Field(default=0, ge=0)

    log_level: str = "INFO"


def get_settings() -> Settings:
    return Settings()
