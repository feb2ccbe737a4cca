from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    SERVICE_NAME: str = "marketplace-service"
    SERVICE_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"
    RUN_MIGRATIONS: bool = True

    # Full URL wins over the POSTGRES_* parts
    DATABASE_URL: Optional[str] = None
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "marketplace"
    POSTGRES_USER: str = "marketplace"
    POSTGRES_PASSWORD: str = "marketplace"

    JWT_SECRET: str = "change-me"
    JWT_ALG: str = "HS256"

    # Public base URL, used to build provider callback URLs
    APP_URL: str = "http://localhost:8000"

    STRIPE_SECRET_KEY: str = ""
    STRIPE_PUBLIC_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_CURRENCY: str = "usd"
    STRIPE_AMOUNT_MULTIPLIER: float = 1.0

    LABYRINTHE_API_URL: str = ""
    LABYRINTHE_TOKEN: str = ""
    LABYRINTHE_COUNTRY: str = "CD"
    LABYRINTHE_CURRENCY: str = "CDF"

    SMS_API_URL: str = ""
    SMS_USER: str = ""
    SMS_PASSWORD: str = ""
    SMS_SENDER: str = "Marketplace"

    PAYMENT_PAGE_URL: str = "https://pay.example.com"
    MISSION_EARNING: int = 2000
    FREE_TRIAL_AT_CHECKOUT: bool = False
    REQUIRE_CARD_PAYMENT_BEFORE_CONFIRM: bool = True

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
