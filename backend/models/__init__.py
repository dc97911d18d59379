"""SQLAlchemy ORM models for the flashcard database."""

from backend.models.base import Base
from backend.models.card import Card
from backend.models.daily_goal import DailyGoal
from backend.models.deck import Deck
from backend.models.review_log import ReviewLog

__all__ = ["Base", "Card", "DailyGoal", "Deck", "ReviewLog"]
