"""Application settings loaded from the environment and the project ``.env``."""
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    # SwiftWallet
    swift_api_key: Optional[str] = Field(default=None, description="Bearer credential for the gateway")
    swift_channel_id: str = Field(default="000260", description="Payment channel identifier")
    swift_api_base_url: str = Field(default="https://swiftwallet.co.ke")
    gateway_timeout: float = Field(default=30.0, description="Gateway request timeout (seconds)")

    # Service
    callback_base_url: str = Field(default="https://swiftloan-back.onrender.com")
    cors_origin: str = Field(default="https://smartfundke.onrender.com")
    port: int = Field(default=5000)
    database_url: str = Field(default="sqlite:///./receipts.db")
    log_level: str = Field(default="INFO")

    # Withdrawals
    default_loan_amount: str = Field(default="50000")
    max_amount: int = Field(default=250000, description="Largest fee accepted for one STK push")
    brand_name: str = Field(default="SwiftLoan Kenya")
    loan_account: str = Field(default="STNYGP")

    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def callback_url(self) -> str:
        return f"{self.callback_base_url.rstrip('/')}/callback"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings; loaded once per process."""
    return Settings()
