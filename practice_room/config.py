import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() in {"1", "true", "yes"}


@dataclass
class Settings:
    """Settings read from the environment when the instance is created.

    ``database_url`` and ``database_key`` are the two backend credentials.
    If either is missing the app runs on the in-memory backend.
    """

    database_url: Optional[str] = field(default_factory=lambda: os.environ.get("DATABASE_URL") or None)
    database_key: Optional[str] = field(default_factory=lambda: os.environ.get("DATABASE_KEY") or None)
    admin_label: str = field(default_factory=lambda: os.environ.get("ADMIN_LABEL", "Admin"))
    default_user_name: str = field(default_factory=lambda: os.environ.get("DEFAULT_USER_NAME", "Guest"))
    log_level: str = field(default_factory=lambda: os.environ.get("LOG_LEVEL", "INFO"))
    sql_echo: bool = field(default_factory=lambda: _env_flag("SQL_ECHO"))
    # Oldest idle sessions are dropped past this many
    max_sessions: int = field(default_factory=lambda: int(os.environ.get("MAX_SESSIONS", "1000")))

    @property
    def backend_configured(self) -> bool:
        return bool(self.database_url and self.database_key)


def get_settings() -> Settings:
    return Settings()
