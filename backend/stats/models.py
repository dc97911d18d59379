"""
Data structures for review history and derived statistics.

These are pure data structures with no I/O. Every aggregate is a function
of the review event history, the current scheduling state per card and the
goal configuration.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Literal

TrendDirection = Literal["improving", "stable", "declining"]
CardStatus = Literal["new", "learning", "review", "completed"]
TimeRange = Literal["week", "month", "year"]
GoalKind = Literal["cards", "time", "streak"]


@dataclass(frozen=True)
class ReviewEvent:
    """
    One answered card. Append-only; never modified once written.

    Attributes:
        card_id: The card that was reviewed.
        reviewed_at: When the answer was given.
        quality: Button pressed (1=Again, 2=Hard, 3=Good, 4=Easy).
        response_time: Time to answer in milliseconds.
        ease_factor: Ease factor produced by this review.
        interval: Interval (days) produced by this review.
        session_id: Study session the answer belongs to, if any.
    """

    card_id: int
    reviewed_at: datetime
    quality: int
    response_time: int
    ease_factor: float
    interval: float
    session_id: str | None = None


@dataclass
class DeckStatistics:
    deck_id: int
    total_cards: int = 0
    new_cards: int = 0
    learning_cards: int = 0
    review_cards: int = 0
    completed_cards: int = 0
    total_reviews: int = 0
    total_sessions: int = 0
    total_study_time: int = 0  # ms
    average_session_time: float = 0.0  # ms
    average_quality: float = 0.0
    retention_rate: float = 0.0
    difficulty_rating: float = 0.0
    mastery_level: float = 0.0
    last_studied_at: datetime | None = None


@dataclass
class DayActivity:
    date: date
    cards_studied: int = 0
    reviews: int = 0
    time_spent: int = 0  # ms
    average_quality: float = 0.0


@dataclass
class GlobalStatistics:
    total_decks: int = 0
    total_cards: int = 0
    new_cards: int = 0
    learning_cards: int = 0
    review_cards: int = 0
    completed_cards: int = 0
    total_reviews: int = 0
    total_sessions: int = 0
    total_study_time: int = 0  # ms
    average_session_time: float = 0.0  # ms
    average_quality: float = 0.0
    retention_rate: float = 0.0
    difficulty_rating: float = 0.0
    mastery_level: float = 0.0
    study_streak: int = 0
    longest_streak: int = 0
    daily_average: float = 0.0
    weekly_average: float = 0.0
    monthly_average: float = 0.0
    recent_activity: list[DayActivity] = field(default_factory=list)


@dataclass
class CardStatistics:
    card_id: int
    status: CardStatus = "new"
    total_reviews: int = 0
    correct_answers: int = 0
    average_quality: float = 0.0
    average_response_time: float = 0.0  # ms
    retention_rate: float = 0.0
    ease_factor: float = 2.5
    interval: float = 0.0
    repetitions: int = 0
    last_review_date: datetime | None = None
    next_review_date: datetime | None = None
    difficulty_level: Literal["easy", "medium", "hard"] = "medium"
    mastery_score: float = 0.0


@dataclass(frozen=True)
class QualityPoint:
    reviewed_at: datetime
    quality: int


@dataclass(frozen=True)
class ResponseTimePoint:
    reviewed_at: datetime
    response_time: int


@dataclass
class LearningCurve:
    card_id: int
    quality_progression: list[QualityPoint] = field(default_factory=list)
    response_time_progression: list[ResponseTimePoint] = field(default_factory=list)
    improvement_trend: TrendDirection = "stable"
    trend_slope: float = 0.0
    mastery_score: float = 0.0  # 0-100


@dataclass
class DailyGoals:
    """
    Daily study targets plus the progress recorded against them.

    ``time_goal`` and ``time_completed`` are in minutes. The progress fields
    are only meaningful on ``progress_date``.
    """

    cards_goal: int = 20
    time_goal: int = 30
    streak_goal: int = 7
    cards_completed: int = 0
    time_completed: float = 0.0
    current_streak: int = 0
    total_achievements: int = 0
    progress_date: date | None = None  # local day the progress fields describe


@dataclass(frozen=True)
class Milestone:
    kind: GoalKind
    target: int
    current: int
    remaining: int


@dataclass
class GoalAchievement:
    date: date
    cards_goal_achieved: bool = False
    time_goal_achieved: bool = False
    streak_goal_achieved: bool = False
    overall_progress: float = 0.0  # percent, capped at 100
    achievements: list[str] = field(default_factory=list)
    next_milestone: Milestone | None = None


@dataclass
class DailyProgress:
    date: date
    cards_studied: int = 0
    reviews_completed: int = 0
    time_spent: int = 0  # ms
    average_quality: float = 0.0
    cards_goal: int = 0
    time_goal: int = 0  # minutes


@dataclass
class WeeklyTrend:
    week_start: date
    week_end: date
    daily_data: list[DayActivity] = field(default_factory=list)
    total_cards: int = 0
    total_time: int = 0  # ms
    average_daily: float = 0.0
    best_day: date | None = None
    consistency: float = 0.0  # fraction of days with any study


@dataclass(frozen=True)
class BestWeek:
    week_start: date
    cards_studied: int


@dataclass
class MonthlyReport:
    year: int
    month: int
    total_reviews: int = 0
    total_sessions: int = 0
    total_cards_studied: int = 0
    total_time_spent: int = 0  # ms
    average_reviews_per_day: float = 0.0
    average_cards_per_day: float = 0.0
    retention_rate: float = 0.0
    study_days: int = 0
    best_week: BestWeek | None = None
    achievements: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class TrendPoint:
    period_start: date
    value: int


@dataclass
class TrendData:
    deck_id: int
    period: TimeRange
    data_points: list[TrendPoint] = field(default_factory=list)
    total: int = 0
    average: float = 0.0
    trend: TrendDirection = "stable"
