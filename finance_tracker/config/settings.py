"""
Configuration Management for Finance Tracker

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""
    
    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )
    
    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )
    
    # One worksheet per collection
    investments_sheet_name: str = Field(default="Investments")
    subscriptions_sheet_name: str = Field(default="Subscriptions")
    transactions_sheet_name: str = Field(default="Transactions")
    goals_sheet_name: str = Field(default="Goals")
    sync_intents_sheet_name: str = Field(
        default="SyncOutbox",
        description="Name of the sheet holding pending shadow-sync intents"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )
    
    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class SyncSettings(BaseSettings):
    """Shadow ledger synchronization behaviour."""
    
    model_config = SettingsConfigDict(
        env_prefix="SYNC_",
        extra="ignore"
    )
    
    shadow_sync_enabled: bool = Field(
        default=True,
        description="Mirror investments and subscriptions into the ledger"
    )
    max_sync_attempts: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Attempts before a failed sync intent stops being retried"
    )
    legacy_value_matching: bool = Field(
        default=False,
        description=(
            "Fall back to matching shadow entries by owner/amount/date/category "
            "when no linked entry exists. Only for data created before links."
        )
    )
    subscription_default_category: str = Field(
        default="General",
        description="Category given to subscriptions created without one"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.
    
    Loads configuration from environment variables and .env file.
    """
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )
    
    # Validation thresholds
    max_amount: float = Field(
        default=100000000.0,
        description="Maximum reasonable amount for a single record (sanity check)"
    )
    max_annual_rate_percent: float = Field(
        default=100.0,
        ge=0.0,
        description="Expected return rates above this are rejected"
    )
    future_date_tolerance_days: int = Field(
        default=366,
        description="How many days in the future a record date can be"
    )


class Settings(BaseSettings):
    """
    Root settings container.
    
    Aggregates all sub-settings for easy access.
    """
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )
    
    # Note: These are loaded lazily to allow partial configuration
    
    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()
    
    @property
    def sync(self) -> SyncSettings:
        return SyncSettings()
    
    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).
    
    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.
    
    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}
    settings = get_settings()
    
    for name in ("google_sheets", "sync", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)
    
    return results
