import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: str = "sqlite:///./stepcoin.db"
    TEST_DATABASE_URL: Optional[str] = None

    # Tier progression
    TIER_CARRY_OVER_EXCESS: bool = False  # False = discard excess steps on advancement

    # Bonus sources (comma-separated subset of weekend,seasonal,streak,milestone)
    BONUS_KINDS: str = "weekend,seasonal,streak,milestone"

    # Streaks
    STREAK_QUALIFYING_STEPS: int = 5000
    STREAK_MILESTONE_DAYS: int = 7
    STREAK_BONUS_UNITS: int = 500  # paisa
    STREAK_RESET_AFTER_BONUS: bool = True

    # Redemption
    RATE_LIMIT_ENABLED: bool = True
    REDEMPTION_RATE_LIMIT_ATTEMPTS: int = 5
    REDEMPTION_RATE_LIMIT_WINDOW_SECONDS: float = 60.0
    REDEMPTION_LOCK_TIMEOUT_SECONDS: float = 2.0

    # Per-user serialization for tier/streak/earnings updates
    USER_LOCK_TIMEOUT_SECONDS: float = 5.0

    # Notifications
    EVENT_BUFFER_PER_USER: int = 50

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


KNOWN_BONUS_KINDS = ("weekend", "seasonal", "streak", "milestone")


def bonus_kinds(settings_obj: Optional[Settings] = None) -> tuple[str, ...]:
    """Parse BONUS_KINDS into an ordered tuple of known kinds."""
    cfg = settings_obj or settings
    raw = [part.strip().lower() for part in (cfg.BONUS_KINDS or "").split(",")]
    return tuple(kind for kind in KNOWN_BONUS_KINDS if kind in raw)


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate numeric and policy configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("stepcoin")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    problems = []
    if not cfg.DATABASE_URL:
        problems.append("DATABASE_URL is empty")
    if cfg.STREAK_QUALIFYING_STEPS <= 0:
        problems.append("STREAK_QUALIFYING_STEPS must be positive")
    if cfg.STREAK_MILESTONE_DAYS <= 0:
        problems.append("STREAK_MILESTONE_DAYS must be positive")
    if cfg.STREAK_BONUS_UNITS < 0:
        problems.append("STREAK_BONUS_UNITS must not be negative")
    if cfg.REDEMPTION_RATE_LIMIT_ATTEMPTS <= 0:
        problems.append("REDEMPTION_RATE_LIMIT_ATTEMPTS must be positive")
    if cfg.REDEMPTION_RATE_LIMIT_WINDOW_SECONDS <= 0:
        problems.append("REDEMPTION_RATE_LIMIT_WINDOW_SECONDS must be positive")
    if cfg.REDEMPTION_LOCK_TIMEOUT_SECONDS < 0 or cfg.USER_LOCK_TIMEOUT_SECONDS < 0:
        problems.append("lock timeouts must not be negative")

    unknown = [
        part.strip()
        for part in (cfg.BONUS_KINDS or "").split(",")
        if part.strip() and part.strip().lower() not in KNOWN_BONUS_KINDS
    ]
    if unknown:
        problems.append(f"Unknown BONUS_KINDS: {', '.join(unknown)}")

    if problems:
        message = f"Invalid configuration: {'; '.join(problems)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
