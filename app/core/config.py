"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or .env file."""
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Application
    app_name: str = "Studio Calendar Sync"
    debug: bool = False
    log_dir: str = "~/.logs/studio-calendar-sync"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    allowed_origins: str = "*"  # Comma-separated origins, or "*" for all
    public_base_url: str = "http://localhost:8000"

    # Database
    database_url: str = "sqlite:///./calendar_sync.db"

    # Secret used to derive the Fernet key for tokens and client secrets
    encryption_key: str = "change-me-in-production"

    # Microsoft identity platform / Graph
    authority_url: str = "https://login.microsoftonline.com"
    graph_base_url: str = "https://graph.microsoft.com/v1.0"
    oauth_scopes: str = "openid profile offline_access User.Read Calendars.ReadWrite"
    oauth_state_ttl_minutes: int = 10
    http_timeout_seconds: float = 30.0

    # Token refresh
    token_refresh_margin_seconds: int = 300

    # Sync settings
    default_timezone: str = "Europe/Rome"
    sync_interval_minutes: int = 15
    pull_horizon_days: int = 365
    page_size: int = 100
    retry_attempts: int = 3
    retry_initial_delay: float = 1.0

    @property
    def redirect_uri(self) -> str:
        return f"{self.public_base_url.rstrip('/')}/microsoft365/callback"


settings = Settings()
