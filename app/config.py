"""
Configuration management using Pydantic settings.
Loads environment variables for Supabase, the Airtable OAuth app and webhook sync.
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    # Supabase Configuration
    supabase_url: str
    supabase_service_key: str

    # Airtable OAuth / API Configuration
    airtable_client_id: str = ""
    airtable_client_secret: str = ""  # Optional for public OAuth clients
    airtable_api_base_url: str = "https://api.airtable.com/v0"
    airtable_token_url: str = "https://airtable.com/oauth2/v1/token"
    airtable_request_timeout_seconds: float = 30.0
    airtable_max_payload_pages: int = 50

    # Public URL Airtable calls back (e.g. https://forms.example.com)
    public_base_url: str = ""

    # Webhook Sync Configuration
    notification_timeout_seconds: float = 120.0
    webhook_require_cursor: bool = False
    airtable_verify_webhook_mac: bool = True
    allow_system_credential_fallback: bool = True  # Single-tenant shortcut

    # Token Configuration
    token_encryption_key: str = ""  # 44-char Fernet key; empty disables encryption at rest
    token_refresh_threshold_seconds: int = 15 * 60

    # Webhook Refresh Worker Configuration
    webhook_refresh_interval_hours: float = 12.0
    webhook_refresh_threshold_hours: float = 48.0

    # Application Configuration
    app_environment: str = "development"
    log_level: str = "INFO"

    # Retry Configuration (interactive registration path)
    max_retry_attempts: int = 3
    retry_backoff_multiplier: float = 2.0
    retry_initial_delay_seconds: float = 1.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()
