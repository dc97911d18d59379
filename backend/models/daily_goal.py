from datetime import date

from sqlalchemy import Date, Float, Integer
from sqlalchemy.orm import Mapped, mapped_column

from backend.config import settings
from backend.models.base import Base, TimestampMixin


class DailyGoal(Base, TimestampMixin):
    """Single-row table holding the user's daily study targets and today's progress."""

    __tablename__ = "daily_goals"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    cards_goal: Mapped[int] = mapped_column(Integer, nullable=False, default=settings.default_cards_goal)
    time_goal: Mapped[int] = mapped_column(Integer, nullable=False, default=settings.default_time_goal)  # minutes
    streak_goal: Mapped[int] = mapped_column(Integer, nullable=False, default=settings.default_streak_goal)

    # Progress recorded by the last goal check, for the local day in progress_date
    cards_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    time_completed: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)  # minutes
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_achievements: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    progress_date: Mapped[date | None] = mapped_column(Date, nullable=True)
