# utilitrack/config.py

from datetime import date, datetime
from typing import List
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///utilitrack.sqlite"  # file in project root
    DB_ECHO: bool = False
    CREATE_SCHEMA_ON_STARTUP: bool = True

    TIMEZONE: str = "Africa/Nairobi"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["*"]

    # Billing
    BILL_DUE_DAYS: int = 14
    DEFAULTER_DAYS_OVERDUE: int = 30

    class Config:
        env_file = ".env"


settings = Settings()


def today() -> date:
    """
    Server 'today' in the configured utility timezone.
    """
    return datetime.now(ZoneInfo(settings.TIMEZONE)).date()
