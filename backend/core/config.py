import os
import logging
import secrets
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


load_dotenv(".env.local")
load_dotenv()


def _env_list(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


@dataclass
class Settings:
    storage_backend: str = "memory"  # memory | mongo
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "hospital_portal"
    cas_retries: int = 5
    login_delay_seconds: float = 0.0
    session_max_age: int = 86400
    secret_key: str = field(default_factory=lambda: secrets.token_urlsafe(32))
    schedule_days: int = 30
    log_level: str = "INFO"
    cors_origins: List[str] = field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:5173"]
    )

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables"""
        settings = cls(
            storage_backend=os.getenv("STORAGE_BACKEND", "memory").lower(),
            mongodb_uri=os.getenv("MONGODB_URI", "mongodb://localhost:27017"),
            mongodb_db_name=os.getenv("MONGODB_DB_NAME", "hospital_portal"),
            cas_retries=int(os.getenv("STORAGE_CAS_RETRIES", "5")),
            login_delay_seconds=float(os.getenv("LOGIN_DELAY_SECONDS", "0")),
            session_max_age=int(os.getenv("SESSION_MAX_AGE", "86400")),
            secret_key=os.getenv("SECRET_KEY") or secrets.token_urlsafe(32),
            schedule_days=int(os.getenv("SCHEDULE_DAYS", "30")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            cors_origins=_env_list(
                "CORS_ORIGINS", "http://localhost:3000,http://localhost:5173"
            ),
        )

        if settings.storage_backend not in ("memory", "mongo"):
            logger.warning(
                f"[Config] Unknown storage backend '{settings.storage_backend}', using memory"
            )
            settings.storage_backend = "memory"

        if not os.getenv("SECRET_KEY"):
            logger.warning("[Config] SECRET_KEY is not set, sessions will not survive a restart")

        return settings
