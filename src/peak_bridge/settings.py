from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Bybit (USDT perpetuals)
    bybit_api_key: str = Field(default="", validation_alias="BYBIT_API_KEY")
    bybit_api_secret: str = Field(default="", validation_alias="BYBIT_API_SECRET")
    bybit_api_url: str = Field(default="https://api.bybit.com", validation_alias="BYBIT_API_URL")
    account_type: str = Field(default="UNIFIED", validation_alias="ACCOUNT_TYPE")

    # Webhook
    webhook_secret: str = Field(default="", validation_alias="WEBHOOK_SECRET")
    host: str = Field(default="0.0.0.0", validation_alias="HOST")
    port: int = Field(default=10000, validation_alias="PORT")

    # Telegram
    telegram_bot_token: str = Field(default="", validation_alias="TELEGRAM_BOT_TOKEN")
    telegram_chat_id: str = Field(default="", validation_alias="TELEGRAM_CHAT_ID")

    # Logging
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    def base_url(self) -> str:
        return "".join(self.bybit_api_url.split()).rstrip("/")

    def webhook_enabled(self) -> bool:
        return bool(self.webhook_secret.strip())
