import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "3000"))
    cors_origins: List[str] = field(
        default_factory=lambda: [
            origin.strip()
            for origin in os.getenv("CORS_ORIGINS", "*").split(",")
            if origin.strip()
        ]
    )

    # Database settings
    database_file: str = os.getenv("LIBRARY_DB_FILE", os.path.join("data", "library.db"))
    seed_on_startup: bool = _env_flag("SEED_ON_STARTUP", "True")

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Library API")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    app_description: str = "REST API for managing books and authors with SQLite"
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    debug: bool = _env_flag("DEBUG", "False")


settings = Settings()
