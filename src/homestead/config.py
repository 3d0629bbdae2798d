"""Configuration settings for the application."""

from urllib.parse import quote

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database configuration
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    postgres_db: str = "homestead"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    database_url_override: str = ""

    # Application settings
    debug: bool = False
    default_timezone: str = "America/Chicago"

    # Token lifetimes
    access_token_expire_minutes: int = 60
    refresh_token_expire_days: int = 7

    # Twilio (SMS and WhatsApp)
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_sms: str = ""
    twilio_from_whatsapp: str = ""
    twilio_api_base: str = "https://api.twilio.com/2010-04-01"

    # Azure Communication Services (notification emails)
    azure_communication_connection_string: str = ""
    azure_communication_sender: str = ""
    notification_email_subject: str = "Notification from Homestead"

    # Azure Blob Storage (inventory photos)
    azure_storage_connection_string: str = ""
    azure_storage_container: str = "homestead"
    signed_url_expiry_seconds: int = 3600

    # Ammo threshold trigger contract
    threshold_batch_size: int = 10
    threshold_max_retries: int = 2
    threshold_timeout_seconds: float = 60.0
    notifier_timeout_seconds: float = 30.0

    @property
    def database_url(self) -> str:
        """Construct the database URL for async PostgreSQL connection."""
        if self.database_url_override:
            return self.database_url_override
        base_url = (
            f"postgresql+asyncpg://{quote(self.postgres_user, safe='')}:{quote(self.postgres_password, safe='')}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )
        # Add SSL for Azure PostgreSQL
        if "azure" in self.postgres_host.lower() or "postgres.database" in self.postgres_host.lower():
            return f"{base_url}?ssl=require"
        return base_url


# Global settings instance
settings = Settings()
