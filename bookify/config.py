import os
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import List

from dotenv import load_dotenv

load_dotenv()


class UpdateMode(str, Enum):
    STRICT = "strict"
    UPSERT = "upsert"


def _split_origins(value: str) -> List[str]:
    return [origin.strip() for origin in value.split(",") if origin.strip()]


DEFAULT_CORS_ORIGINS = (
    "http://localhost:5173,"
    "http://localhost:5174,"
    "https://library-managment-system-797c1.web.app"
)


@dataclass
class Settings:
    # Database
    mongodb_url: str = os.getenv("MONGODB_URL", "mongodb://localhost:27017")
    database_name: str = os.getenv("DATABASE_NAME", "libraryManagement")
    server_selection_timeout_ms: int = int(
        os.getenv("SERVER_SELECTION_TIMEOUT_MS", "5000")
    )

    # Auth
    access_token_secret: str = os.getenv(
        "ACCESS_TOKEN_SECRET", "bookify-dev-secret-change-this-in-production"
    )
    token_algorithm: str = os.getenv("TOKEN_ALGORITHM", "HS256")
    token_expiry_days: int = int(os.getenv("TOKEN_EXPIRY_DAYS", "365"))

    # Server
    environment: str = os.getenv("ENVIRONMENT", "development")
    port: int = int(os.getenv("PORT", "5000"))
    cors_origins: List[str] = field(
        default_factory=lambda: _split_origins(
            os.getenv("CORS_ORIGINS", DEFAULT_CORS_ORIGINS)
        )
    )
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Behaviour
    book_update_mode: UpdateMode = os.getenv("BOOK_UPDATE_MODE", "strict")
    track_quantity: bool = os.getenv("TRACK_QUANTITY", "true").lower() in (
        "true",
        "1",
        "yes",
    )
    default_page_size: int = int(os.getenv("DEFAULT_PAGE_SIZE", "10"))

    def __post_init__(self):
        try:
            self.book_update_mode = UpdateMode(self.book_update_mode)
        except ValueError:
            raise ValueError(
                f"Invalid book update mode: {self.book_update_mode!r} "
                f"(expected one of {[m.value for m in UpdateMode]})"
            )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    return Settings()
