"""
Environment configuration for the GenBook backend.

Canonical variable names win; legacy aliases are only consulted when the
canonical variable is unset. Billing credentials are optional so the core API
can start without Razorpay (local development), but their absence in
production is logged.

Configuration (environment variables):
- APP_ENV:                  Deployment environment (default: "development")
- LOG_LEVEL:                Root log level (default: "INFO")
- DATABASE_URL:             SQLAlchemy URL (default: local sqlite file)
- SUPABASE_URL:             Auth provider base URL
- SUPABASE_JWT_SECRET:      HS256 secret used to verify session tokens
- RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET / RAZORPAY_WEBHOOK_SECRET
- ALLOWED_ORIGINS:          Comma-separated CORS origins
- SUBS_GRACE_DAYS:          Days an active subscription survives past its
                            period end (alias RAZORPAY_GRACE_DAYS, default 3)
- PLANS_CONFIG_PATH:        Plan catalog JSON (default: bundled plans.json)
- REDIS_URL:                Optional Redis for shared client caches
"""

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_PLANS_PATH = Path(__file__).resolve().parent / "plans.json"
DEFAULT_DATABASE_URL = "sqlite:///./genbook.db"
DEFAULT_GRACE_DAYS = 3

_settings: Optional["Settings"] = None


def _pick(primary: str, *aliases: str, default: Optional[str] = None) -> Optional[str]:
    env = os.environ
    if env.get(primary):
        return env[primary]
    for name in aliases:
        if env.get(name):
            return env[name]
    return default


def _mask(value: Optional[str]) -> Optional[str]:
    if not value:
        return value
    if len(value) <= 8:
        return "*" * len(value)
    return value[:4] + "*" * (len(value) - 8) + value[-4:]


@dataclass(frozen=True)
class Settings:
    """Application settings, loaded once per process."""

    app_env: str = "development"
    log_level: str = "INFO"
    database_url: str = DEFAULT_DATABASE_URL
    supabase_url: Optional[str] = None
    supabase_jwt_secret: Optional[str] = None
    razorpay_key_id: Optional[str] = None
    razorpay_key_secret: Optional[str] = None
    razorpay_webhook_secret: Optional[str] = None
    allowed_origins: Tuple[str, ...] = field(default_factory=tuple)
    grace_days: int = DEFAULT_GRACE_DAYS
    plans_config_path: Path = DEFAULT_PLANS_PATH
    redis_url: Optional[str] = None

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def billing_configured(self) -> bool:
        return bool(self.razorpay_key_id and self.razorpay_key_secret)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build Settings from the process environment."""
        grace_raw = _pick("SUBS_GRACE_DAYS", "RAZORPAY_GRACE_DAYS", default=str(DEFAULT_GRACE_DAYS))
        try:
            grace_days = int(grace_raw)
        except ValueError:
            raise ValueError(f"SUBS_GRACE_DAYS must be an integer, got {grace_raw!r}")
        if grace_days < 0:
            raise ValueError("SUBS_GRACE_DAYS must not be negative")

        origins_raw = _pick("ALLOWED_ORIGINS", default="") or ""
        origins = tuple(o.strip() for o in origins_raw.split(",") if o.strip())

        settings = cls(
            app_env=(_pick("APP_ENV", "NODE_ENV", default="development") or "development").strip(),
            log_level=(_pick("LOG_LEVEL", default="INFO") or "INFO").strip().upper(),
            database_url=_pick("DATABASE_URL", "POSTGRES_DSN", default=DEFAULT_DATABASE_URL),
            supabase_url=_pick("SUPABASE_URL"),
            supabase_jwt_secret=_pick("SUPABASE_JWT_SECRET"),
            razorpay_key_id=_pick("RAZORPAY_KEY_ID"),
            razorpay_key_secret=_pick("RAZORPAY_KEY_SECRET"),
            razorpay_webhook_secret=_pick("RAZORPAY_WEBHOOK_SECRET"),
            allowed_origins=origins,
            grace_days=grace_days,
            plans_config_path=Path(_pick("PLANS_CONFIG_PATH", default=str(DEFAULT_PLANS_PATH))),
            redis_url=_pick("REDIS_URL"),
        )

        if settings.is_production and not settings.billing_configured:
            logger.warning("Razorpay keys missing in production environment")
        return settings

    def redacted(self) -> dict:
        """Settings as a dict with secrets masked, safe for logs."""
        return {
            "app_env": self.app_env,
            "log_level": self.log_level,
            "database_url": self.database_url.split("@")[-1],
            "supabase_url": self.supabase_url,
            "supabase_jwt_secret": _mask(self.supabase_jwt_secret),
            "razorpay_key_id": self.razorpay_key_id,
            "razorpay_key_secret": _mask(self.razorpay_key_secret),
            "razorpay_webhook_secret": _mask(self.razorpay_webhook_secret),
            "allowed_origins": list(self.allowed_origins),
            "grace_days": self.grace_days,
            "plans_config_path": str(self.plans_config_path),
            "redis_url": self.redis_url.split("@")[-1] if self.redis_url else None,
        }

    def with_overrides(self, **changes) -> "Settings":
        return replace(self, **changes)


def get_settings() -> Settings:
    """Return the cached process settings."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Drop cached settings so the next get_settings() re-reads the environment."""
    global _settings
    _settings = None
