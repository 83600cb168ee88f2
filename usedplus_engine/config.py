"""Configuration management using Pydantic Settings"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = "sqlite:///./usedplus.db"

    # Ledger collaborator: "memory" keeps balances in the database, "http" calls ledger_base_url
    ledger_mode: str = "memory"
    ledger_base_url: str = "http://localhost:8002"

    # Asset registry collaborator: "memory" keeps ownership in the database, "http" calls asset_registry_base_url
    asset_registry_mode: str = "memory"
    asset_registry_base_url: str = "http://localhost:8003"

    # Service
    service_name: str = "usedplus-engine"
    log_level: str = "INFO"

    # HTTP Client
    http_timeout_seconds: float = 5.0
    ledger_max_retries: int = 3
    ledger_backoff_base: float = 0.5  # Exponential backoff base in seconds
    asset_registry_max_retries: int = 3
    asset_registry_backoff_base: float = 0.5

    # Simulation clock
    hours_per_month: int = 24

    # Deal servicing
    missed_payments_to_default: int = 3
    minimum_payment_floor: float = 0.5  # fraction of monthly interest
    prepayment_penalty_enabled: bool = True

    # Credit
    starting_credit_score: int = 650
    trend_window_months: int = 6
    credit_report_tail: int = 10

    # Marketplace
    offer_expiry_hours: int = 48
    max_sale_rounds: int = 3
    max_listings_per_account: int = 3


settings = Settings()
