from datetime import UTC, datetime
from pathlib import Path

from pydantic_settings import BaseSettings


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime.

    Replaces the deprecated ``datetime.utcnow()`` while keeping datetimes
    naive so they stay compatible with SQLite (which doesn't store tz info).
    """
    return datetime.now(UTC).replace(tzinfo=None)


class Settings(BaseSettings):
    app_name: str = "Flashcards"
    database_url: str = f"sqlite+aiosqlite:///{Path(__file__).resolve().parent.parent / 'data' / 'flashcards.db'}"
    debug: bool = False
    timezone: str = "UTC"  # IANA name; calendar days, streaks and goals follow this zone

    # Study queue
    max_new_cards_per_session: int = 10
    max_reviews_per_session: int = 20
    new_card_ratio: float = 0.25

    # Card classification thresholds
    learning_repetitions: int = 2  # below this a reviewed card is still "learning"
    mastered_repetitions: int = 5
    mastered_interval_days: float = 21.0

    # Mastery weighting
    mastery_retention_weight: float = 0.7  # remainder goes to ease factor proximity
    target_ease_factor: float = 2.5
    recency_half_life_days: float = 30.0
    trend_tolerance: float = 0.05  # quality points per review

    # Trailing windows for the global averages
    daily_window_days: int = 7
    weekly_window_weeks: int = 4
    monthly_window_months: int = 3

    # Daily goal defaults
    default_cards_goal: int = 20
    default_time_goal: int = 30  # minutes
    default_streak_goal: int = 7

    model_config = {"env_prefix": "FLASHCARDS_", "env_file": ".env"}


settings = Settings()
