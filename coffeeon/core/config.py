from pydantic import BaseModel
from dotenv import load_dotenv
from pathlib import Path
import os

APP_ENV = os.getenv("APP_ENV", "local")
# .env.<APP_ENV> fills in whatever the process environment does not set
load_dotenv(Path.cwd() / f".env.{APP_ENV}", override=False)


def _database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    user = os.getenv("DB_USER", "postgres")
    password = os.getenv("DB_PASSWORD", "postgres")
    host = os.getenv("DB_HOST", "localhost")
    port = os.getenv("DB_PORT", "5432")
    name = os.getenv("DB_NAME", "coffeeon")
    return f"postgresql+psycopg://{user}:{password}@{host}:{port}/{name}"


def _csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class Settings(BaseModel):
    APP_ENV: str = APP_ENV
    DATABASE_URL: str = _database_url()
    DB_TIMEOUT_SECONDS: int = int(os.getenv("DB_TIMEOUT_SECONDS", "10"))
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "3000"))
    CORS_ORIGINS: list[str] = _csv(os.getenv(
        "CORS_ORIGINS",
        "http://localhost:5500,http://127.0.0.1:5500,http://localhost:5501,http://127.0.0.1:5501",
    ))

    SESSION_COOKIE_NAME: str = os.getenv("SESSION_COOKIE_NAME", "session")
    SESSION_MAX_AGE_SECONDS: int = int(os.getenv("SESSION_MAX_AGE_SECONDS", str(60 * 60 * 8)))
    COOKIE_SECURE: bool = os.getenv("COOKIE_SECURE", "false").lower() in ("1", "true", "yes")
    BCRYPT_ROUNDS: int = int(os.getenv("BCRYPT_ROUNDS", "12"))

    SUBSCRIPTION_DISCOUNT_RATE: str = os.getenv("SUBSCRIPTION_DISCOUNT_RATE", "0.10")
    CASHBACK_RATE: str = os.getenv("CASHBACK_RATE", "0.10")
    SUBSCRIPTION_WINDOW_DAYS: int = int(os.getenv("SUBSCRIPTION_WINDOW_DAYS", "30"))
    REPRICE_FROM_CATALOG: bool = os.getenv("REPRICE_FROM_CATALOG", "false").lower() in ("1", "true", "yes")
    ORDER_PLACEMENT_ATTEMPTS: int = int(os.getenv("ORDER_PLACEMENT_ATTEMPTS", "3"))

    SMTP_HOST: str = os.getenv("SMTP_HOST", "localhost")
    SMTP_PORT: int = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USER: str = os.getenv("SMTP_USER", "")
    SMTP_PASSWORD: str = os.getenv("SMTP_PASSWORD", "")
    FROM_EMAIL: str = os.getenv("FROM_EMAIL", "Coffee ON <no-reply@coffeon.com>")

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_DIR: str = os.getenv("LOG_DIR", "")

settings = Settings()
