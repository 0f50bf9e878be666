"""
Configuration management using Pydantic Settings.
Reads from environment variables.
"""

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    model_config = ConfigDict(env_file=".env", case_sensitive=False)

    # Application Configuration
    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Google Sheets storage. Empty spreadsheet id means in-memory storage.
    spreadsheet_id: str = Field(default="", alias="SPREADSHEET_ID")
    google_service_account_file: str = Field(default="", alias="GOOGLE_SERVICE_ACCOUNT_FILE")
    google_service_account_email: str = Field(default="", alias="GOOGLE_SERVICE_ACCOUNT_EMAIL")
    google_private_key: str = Field(default="", alias="GOOGLE_PRIVATE_KEY")
    vacations_worksheet: str = Field(default="Vacations", alias="VACATIONS_WORKSHEET")
    employees_worksheet: str = Field(default="Employees", alias="EMPLOYEES_WORKSHEET")

    # Circuit Breaker Configuration
    circuit_breaker_failure_threshold: int = Field(
        default=5, alias="CIRCUIT_BREAKER_FAILURE_THRESHOLD"
    )
    circuit_breaker_timeout: int = Field(default=60, alias="CIRCUIT_BREAKER_TIMEOUT")

    # Read retries against the spreadsheet API
    sheets_retry_attempts: int = Field(default=3, alias="SHEETS_RETRY_ATTEMPTS")
    sheets_retry_base_delay: float = Field(default=0.5, alias="SHEETS_RETRY_BASE_DELAY")
    sheets_retry_max_delay: float = Field(default=4.0, alias="SHEETS_RETRY_MAX_DELAY")

    @property
    def uses_spreadsheet(self) -> bool:
        return bool(self.spreadsheet_id)


# Global settings instance
settings = Settings()
