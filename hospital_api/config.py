"""
config.py
=========
Runtime settings for the hospital records API.

Settings are read once from the environment at startup and passed
explicitly to the database layer, the authenticator and the coordinator.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Process-wide configuration (built once, threaded through)."""
    database_url: str = "sqlite:///data/hms.db"
    secret_key: str = "change_this_secret"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 8
    reset_token_expire_minutes: int = 15
    environment: str = "production"
    track_ward_occupancy: bool = False
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None

    @property
    def debug(self) -> bool:
        return self.environment == "development"

    @classmethod
    def from_env(cls) -> "Settings":
        db_path = os.getenv("HMS_DB", "data/hms.db")
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            database_url=os.getenv("DATABASE_URL") or f"sqlite:///{db_path}",
            secret_key=os.getenv("SECRET_KEY", "change_this_secret"),
            access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 8)),
            environment=os.getenv("APP_ENV", "production").lower(),
            track_ward_occupancy=_env_flag("TRACK_WARD_OCCUPANCY"),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            admin_email=os.getenv("ADMIN_EMAIL"),
            admin_password=os.getenv("ADMIN_PASSWORD"),
        )
