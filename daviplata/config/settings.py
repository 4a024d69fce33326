"""
Configuration Management for DaviPlata

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CloudinarySettings(BaseSettings):
    """Cloudinary receipt storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CLOUDINARY_",
        extra="ignore"
    )

    cloud_name: str = Field(
        ...,
        description="Cloudinary cloud name"
    )
    api_key: str = Field(
        ...,
        description="Cloudinary API key"
    )
    api_secret: str = Field(
        ...,
        description="Cloudinary API secret"
    )
    folder: str = Field(
        default="daviplata",
        description="Folder receipts are stored under"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets persistence configuration."""

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

    # Sheet names within the spreadsheet
    movements_sheet_name: str = Field(
        default="Movements",
        description="Name of the sheet for movements"
    )
    users_sheet_name: str = Field(
        default="Users",
        description="Name of the sheet for user profiles"
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


class WebhookSettings(BaseSettings):
    """Outbound notification webhooks (messaging automation)."""

    model_config = SettingsConfigDict(
        env_prefix="WEBHOOK_",
        extra="ignore"
    )

    movement_url: str = Field(
        ...,
        description="Receives created/updated movement notifications"
    )
    verify_url: str = Field(
        ...,
        description="Receives verification notifications"
    )
    delete_url: str = Field(
        ...,
        description="Receives retraction notifications for superseded messages"
    )
    timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Per-request timeout"
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

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Ledger policy
    edit_window_minutes: int = Field(
        default=30,
        ge=1,
        le=24 * 60,
        description="Minutes after creation during which the latest movement can be edited"
    )
    recent_movements_limit: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="How many movements the dashboard loads"
    )

    # File upload limits
    max_upload_size_mb: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum upload file size in MB"
    )
    supported_receipt_formats: str = Field(
        default="jpg,jpeg,png,webp,pdf",
        description="Comma-separated list of supported receipt formats"
    )

    # Receipt compression
    image_max_width: int = Field(default=1200, ge=100)
    image_max_height: int = Field(default=1200, ge=100)
    image_quality: int = Field(
        default=85,
        ge=10,
        le=95,
        description="JPEG quality used when re-encoding receipts"
    )
    compression_threshold_kb: int = Field(
        default=100,
        ge=0,
        description="Images smaller than this are uploaded untouched"
    )

    # Display
    currency_symbol: str = Field(default="$")

    # Local runs without Google Sheets
    bootstrap_admin_email: Optional[str] = Field(
        default=None,
        description="Seeded as an admin profile when running on in-memory storage"
    )

    @property
    def supported_formats_list(self) -> list[str]:
        """Get supported formats as a list."""
        return [fmt.strip().lower() for fmt in self.supported_receipt_formats.split(",")]

    @property
    def max_upload_size_bytes(self) -> int:
        """Get max upload size in bytes."""
        return self.max_upload_size_mb * 1024 * 1024


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

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def cloudinary(self) -> CloudinarySettings:
        return CloudinarySettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def webhooks(self) -> WebhookSettings:
        return WebhookSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus `<name>_error`
    entries for the ones that failed. Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("cloudinary", "google_sheets", "webhooks", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
