"""Application configuration

Read from environment variables (or a local .env file).
"""
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    APP_NAME: str = "Hotel Booking Engine API"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # JWT
    SECRET_KEY: str = "your-secret-key-keep-it-secret"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Reservation numbers
    RESERVATION_NUMBER_PREFIX: str = "R"
    RESERVATION_NUMBER_MAX_RETRIES: int = 3

    model_config = ConfigDict(env_file=".env", case_sensitive=True, extra="ignore")


settings = Settings()
