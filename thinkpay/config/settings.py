"""
ThinkPay configuration

Every setting is read from the environment (or a .env file) through
pydantic-settings and validated on first access.

DESIGN DECISION: One module owns configuration.
The business constants of the vault rules (allocation tolerance,
notification threshold, new-account defaults) live here next to the
credentials of the two external services, so a deployment can see at a
glance what it has to provide.
"""

import warnings
from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Where the hosted ledger lives."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Service account key file used to open the ledger spreadsheet"
    )
    spreadsheet_id: str = Field(
        ...,
        description="Key of the spreadsheet holding every ledger worksheet"
    )

    # One worksheet per entity, rows keyed by user id
    users_sheet_name: str = Field(default="Users")
    vaults_sheet_name: str = Field(default="Vaults")
    transactions_sheet_name: str = Field(default="Transactions")
    notifications_sheet_name: str = Field(default="Notifications")
    audit_sheet_name: str = Field(default="AuditLog")

    @field_validator("credentials_path")
    @classmethod
    def credentials_file_present(cls, v: str) -> str:
        """A missing key file only warns; containers often mount it after start."""
        if not Path(v).exists():
            warnings.warn(
                f"No service account key at {v}; "
                "the ledger store cannot connect until it is there."
            )
        return v


class GeminiSettings(BaseSettings):
    """Categorization oracle (Gemini)."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: str = Field(..., description="API key for generativeai")
    model_name: str = Field(default="gemini-1.5-flash")
    max_tokens: int = Field(
        default=1024,
        ge=100,
        le=8192,
        description="Cap on output tokens per categorization or insights call"
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Kept low so the same merchant maps to the same vault"
    )


class AppSettings(BaseSettings):
    """
    Vault and payment rules.

    Read from unprefixed environment variables and .env.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(default="development")
    debug_mode: bool = Field(default=False)

    # Payment rules
    allocation_tolerance: Decimal = Field(
        default=Decimal("0.01"),
        gt=0,
        description="Allowed gap between allocated total and payment amount"
    )
    high_priority_threshold: Decimal = Field(
        default=Decimal("10000"),
        ge=0,
        description="Payments above this amount raise a high-priority notification"
    )
    default_gateway: str = Field(
        default="Razorpay",
        description="Gateway used by instant pay"
    )

    # History windows
    transaction_history_limit: int = Field(
        default=50,
        ge=1,
        le=500,
        description="How many transactions a session loads"
    )
    insights_history_size: int = Field(
        default=15,
        ge=1,
        le=100,
        description="How many recent transactions are sent for monthly insights"
    )

    # New account defaults
    default_total_budget: Decimal = Field(
        default=Decimal("100000"),
        ge=0,
        description="Monthly budget target for new accounts"
    )
    default_opening_balance: Decimal = Field(
        default=Decimal("50000"),
        ge=0,
        description="Opening cash balance for new accounts"
    )
    min_password_length: int = Field(default=6, ge=1)


class Settings(BaseSettings):
    """
    Entry point to every settings section.

    Sections are built on access, so a process that never touches
    Google Sheets does not need its credentials.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings; `get_settings.cache_clear()` forces a reload."""
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Try to build every section.

    Returns:
        {section: ok}, plus `<section>_error` with the message for
        each section that failed
    """
    results = {}
    settings = get_settings()

    for name in ("google_sheets", "gemini", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
