import os
from decimal import Decimal
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root .env, read by load_settings
_project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
_env_path = os.path.join(_project_root, ".env")


class Settings(BaseSettings):
    """
    Runtime configuration, read from the environment (and .env when present).

    - deposit_ratio: fraction of the total collected up front for partial bookings
    - service_fee_ratio / tax_ratio: surcharges applied to room and banquet bookings
    - table_fee_per_guest: flat restaurant reservation fee, in rupees
    """
    model_config = SettingsConfigDict(
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
    )

    app_env: str = "development"
    database_url: str = "sqlite:///hotelcore.db"
    log_level: str = "INFO"
    log_json: bool = True

    razorpay_key_id: Optional[str] = None
    razorpay_key_secret: Optional[str] = None
    razorpay_webhook_secret: Optional[str] = None
    payment_currency: str = "INR"

    deposit_ratio: Decimal = Field(default=Decimal("0.10"), ge=0, le=1)
    service_fee_ratio: Decimal = Field(default=Decimal("0.10"), ge=0)
    tax_ratio: Decimal = Field(default=Decimal("0.12"), ge=0)
    table_fee_per_guest: Decimal = Field(default=Decimal("500"), ge=0)

    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_from_number: Optional[str] = None

    seed_catalog: bool = False

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"

    @property
    def signing_secret(self) -> str:
        # The mock gateway signs with this too, so dev payments verify end to end.
        return self.razorpay_key_secret or "dev-signing-secret"


def load_settings(env_path: Optional[str] = None) -> Settings:
    """Environment variables win over the .env file; empty values fall back to the defaults."""
    return Settings(_env_file=env_path or _env_path)
