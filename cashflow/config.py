from decimal import Decimal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Request store / permission lookup
    database_url: str = "sqlite:///./cashflow.sqlite3"

    # Internal email service
    email_service_url: str = "http://127.0.0.1:8001/v1"
    email_timeout_seconds: float = 30.0
    # 1 keeps delivery at-most-once per transition
    delivery_attempts: int = 1

    # Liquidation figures must reconcile within this tolerance
    amount_tolerance: Decimal = Decimal("0.01")
    currency: str = "PHP"

    class Config:
        env_file = ".env"
        env_prefix = "CASHFLOW_"


settings = Settings()
