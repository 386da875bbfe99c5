"""
Configuration management using pydantic-settings.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from evocore.constants import DEFAULT_FEE_PER_BYTE, PROOF_POLL_INTERVAL
from evocore.models import NetworkType


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    network: NetworkType = NetworkType.TESTNET

    core_rpc_url: str = "http://127.0.0.1:19998"
    core_rpc_user: str = ""
    core_rpc_password: str = ""

    database_url: str = "sqlite:///evo-wallet.db"

    fee_per_byte: int = Field(default=DEFAULT_FEE_PER_BYTE, ge=1)
    proof_poll_interval: float = Field(default=PROOF_POLL_INTERVAL, gt=0)
    # 0 waits forever
    proof_timeout_sec: float = Field(default=600.0, ge=0)
    protocol_retry_attempts: int = Field(default=2, ge=1)
    watch_interval: float = Field(default=5.0, gt=0)

    log_level: str = "INFO"

    @property
    def proof_timeout(self) -> float | None:
        return self.proof_timeout_sec or None


def get_settings() -> Settings:
    return Settings()
