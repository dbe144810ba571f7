"""
Application settings

All configuration is read from the environment once, at startup, and passed
around as a Settings instance. A local .env file is honoured through
python-dotenv.
"""

import os
import re
from datetime import timedelta
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([dhms]?)\s*$")
_DURATION_UNITS = {"d": "days", "h": "hours", "m": "minutes", "s": "seconds", "": "seconds"}


def parse_duration(value: str) -> timedelta:
    """Parse '7d', '12h', '30m', '45s' or a bare number of seconds."""
    match = _DURATION_RE.match(str(value))
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return timedelta(**{_DURATION_UNITS[unit]: int(amount)})


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    database_url: str = Field("mongodb://localhost:27017", description="MongoDB connection string")
    database_name: str = Field("alien_black_market", description="MongoDB database name")
    jwt_secret: str = Field("black-market-dev-secret", description="HS256 signing secret")
    jwt_expires_in: str = Field("7d", description="Token lifetime, e.g. 7d or 12h")
    environment: str = Field("development", description="development|production|test")
    log_level: str = Field("INFO")
    cache_enabled: bool = Field(True)
    cache_default_ttl: int = Field(300, ge=1)
    redis_url: Optional[str] = Field(None, description="Use Redis for the response cache when set")
    rate_limit_enabled: bool = Field(True)
    rate_limit: str = Field("100 per 15 minutes", description="Per-client limit on /api routes")
    auth_rate_limit: str = Field("1000 per 15 minutes", description="Per-client limit on /api/auth routes")
    upload_dir: str = Field("uploads")
    max_upload_size: int = Field(5 * 1024 * 1024, ge=1)
    client_url: str = Field("http://localhost:3000")
    admin_email: Optional[str] = Field("admin@blackmarket.com")
    admin_password: Optional[str] = Field("Admin123456")
    admin_first_name: str = Field("Admin")
    admin_last_name: str = Field("User")
    seed_on_startup: bool = Field(False)
    maintenance_interval: int = Field(600, ge=1, description="Seconds between cleanup runs")
    port: int = Field(8000)

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def token_lifetime(self) -> timedelta:
        return parse_duration(self.jwt_expires_in)

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        defaults = cls()
        return cls(
            database_url=os.getenv("DATABASE_URL", defaults.database_url),
            database_name=os.getenv("DATABASE_NAME", defaults.database_name),
            jwt_secret=os.getenv("JWT_SECRET", defaults.jwt_secret),
            jwt_expires_in=os.getenv("JWT_EXPIRES_IN", defaults.jwt_expires_in),
            environment=os.getenv("ENVIRONMENT", defaults.environment),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level),
            cache_enabled=_env_bool("CACHE_ENABLED", defaults.cache_enabled),
            cache_default_ttl=int(os.getenv("CACHE_DEFAULT_TTL", defaults.cache_default_ttl)),
            redis_url=os.getenv("REDIS_URL") or None,
            rate_limit_enabled=_env_bool("RATE_LIMIT_ENABLED", defaults.rate_limit_enabled),
            rate_limit=os.getenv("RATE_LIMIT", defaults.rate_limit),
            auth_rate_limit=os.getenv("AUTH_RATE_LIMIT", defaults.auth_rate_limit),
            upload_dir=os.getenv("UPLOAD_DIR", defaults.upload_dir),
            max_upload_size=int(os.getenv("MAX_FILE_SIZE", defaults.max_upload_size)),
            client_url=os.getenv("CLIENT_URL", defaults.client_url),
            admin_email=os.getenv("ADMIN_EMAIL", defaults.admin_email),
            admin_password=os.getenv("ADMIN_PASSWORD", defaults.admin_password),
            admin_first_name=os.getenv("ADMIN_FIRST_NAME", defaults.admin_first_name),
            admin_last_name=os.getenv("ADMIN_LAST_NAME", defaults.admin_last_name),
            seed_on_startup=_env_bool("SEED_DATA", defaults.seed_on_startup),
            maintenance_interval=int(os.getenv("MAINTENANCE_INTERVAL", defaults.maintenance_interval)),
            port=int(os.getenv("PORT", defaults.port)),
        )
