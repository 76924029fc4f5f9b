# pharmapos/core/config.py
import os
from typing import List
from pydantic import BaseModel
from dotenv import load_dotenv
from urllib.parse import quote_plus

load_dotenv()


def _split_csv(value: str) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


class Settings(BaseModel):
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "PharmaPOS")
    API_V1_STR: str = os.getenv("API_V1_STR", "/api")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # CORS (env takes priority)
    BACKEND_CORS_ORIGINS: List[str] = _split_csv(
        os.getenv(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ))

    # ---------- MySQL ----------
    MYSQL_HOST: str = os.getenv("MYSQL_HOST", "localhost")
    MYSQL_PORT: int = int(os.getenv("MYSQL_PORT", "3306"))
    MYSQL_USER: str = os.getenv("MYSQL_USER", "pharmapos")
    MYSQL_PASSWORD: str = os.getenv("MYSQL_PASSWORD", "")
    MYSQL_DB: str = os.getenv("MYSQL_DB", "pharmapos")
    DB_DRIVER: str = os.getenv("DB_DRIVER", "pymysql")

    # DATABASE_URL wins over the MySQL parts when set
    SQLALCHEMY_DATABASE_URI: str = os.getenv("DATABASE_URL") or (
        f"mysql+{DB_DRIVER}://{quote_plus(MYSQL_USER)}:{quote_plus(MYSQL_PASSWORD)}"
        f"@{MYSQL_HOST}:{MYSQL_PORT}/{MYSQL_DB}?charset=utf8mb4")

    DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "10"))
    DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "20"))
    # seconds to wait for a pooled connection before failing the request
    DB_POOL_TIMEOUT: int = int(os.getenv("DB_POOL_TIMEOUT", "10"))

    # ---------- Security ----------
    JWT_SECRET: str = os.getenv("JWT_SECRET", "change-this")
    JWT_ALG: str = os.getenv("JWT_ALG", "HS256")

    # ---------- Email ----------
    SMTP_HOST: str = os.getenv("SMTP_HOST", "smtp.gmail.com")
    SMTP_PORT: int = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USER: str = os.getenv("SMTP_USER", "")
    SMTP_PASSWORD: str = os.getenv("SMTP_PASSWORD", "")
    SMTP_FROM: str = os.getenv("SMTP_FROM", "")
    SMTP_TLS: bool = _flag("SMTP_TLS", "true")

    # ---------- Inventory rules ----------
    APP_TIMEZONE: str = os.getenv("APP_TIMEZONE", "Europe/Tirane")
    DEFAULT_LOW_STOCK_THRESHOLD: int = int(
        os.getenv("DEFAULT_LOW_STOCK_THRESHOLD", "10"))
    DEFAULT_EXPIRY_ALERT_DAYS: int = int(
        os.getenv("DEFAULT_EXPIRY_ALERT_DAYS", "30"))
    NEAR_EXPIRY_FINAL_DAYS: int = int(os.getenv("NEAR_EXPIRY_FINAL_DAYS", "7"))
    LOW_STOCK_BUFFER_RATIO: float = float(
        os.getenv("LOW_STOCK_BUFFER_RATIO", "0.10"))
    BATCH_HARD_DELETE_REQUIRES_EMPTY: bool = _flag(
        "BATCH_HARD_DELETE_REQUIRES_EMPTY", "true")
    SALE_DESCRIPTION_MAX_LEN: int = int(
        os.getenv("SALE_DESCRIPTION_MAX_LEN", "2000"))


settings = Settings()
