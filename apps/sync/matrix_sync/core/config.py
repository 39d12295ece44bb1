"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    # Service account (raw JSON key takes precedence over the key file)
    GOOGLE_SERVICE_ACCOUNT_KEY: str = ""
    GOOGLE_SERVICE_ACCOUNT_FILE: str = ""
    GOOGLE_TOKEN_URI: str = "https://oauth2.googleapis.com/token"

    # Spreadsheet backing the matrix
    GOOGLE_SPREADSHEET_ID: str = ""
    SHEETS_API_BASE: str = "https://sheets.googleapis.com/v4/spreadsheets"

    # Token cache
    TOKEN_LIFETIME_SECONDS: int = 3600
    TOKEN_SAFETY_MARGIN_SECONDS: int = 60

    # HTTP
    HTTP_TIMEOUT_SECONDS: float = 30.0
    SHEETS_MAX_ATTEMPTS: int = 1  # 1 = no retry; callers opt in

    # Background refresh
    SYNC_INTERVAL_SECONDS: float = 60.0

    @property
    def service_account_configured(self) -> bool:
        """True when some form of service account key is set."""
        return bool(self.GOOGLE_SERVICE_ACCOUNT_KEY or self.GOOGLE_SERVICE_ACCOUNT_FILE)

    @property
    def spreadsheet_url(self) -> str:
        """Browser URL for manual editing of the spreadsheet."""
        return f"https://docs.google.com/spreadsheets/d/{self.GOOGLE_SPREADSHEET_ID}/edit"


settings = Settings()
