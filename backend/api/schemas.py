"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

from backend.srs.session import SessionStatus


class _FromAttributes(BaseModel):
    """Base for responses built from the domain dataclasses."""

    model_config = {"from_attributes": True}


# --- Session ---


class SessionStartRequest(BaseModel):
    """Request to start a study session for a deck."""

    deck_id: int
    keyboard_shortcuts: bool = True
    auto_advance: bool = False


class CardStateResponse(_FromAttributes):
    """SM-2 scheduling state of one card."""

    card_id: int
    ease_factor: float
    interval: float
    repetitions: int
    last_review_date: datetime | None = None
    next_review_date: datetime | None = None


class SessionStateResponse(_FromAttributes):
    """Progress and timing of a study session."""

    id: str
    deck_id: int
    status: SessionStatus
    start_time: datetime
    end_time: datetime | None = None
    total_cards: int
    completed_cards: int
    current_card_index: int
    correct_answers: int
    total_response_time: int
    quality_scores: list[int]
    paused_time: int
    accuracy: float
    average_response_time: float
    remaining_cards: int
    progress: float
    keyboard_shortcuts: bool
    auto_advance: bool


class SessionStartResponse(BaseModel):
    """Response when starting a new study session."""

    session: SessionStateResponse
    due_cards: int
    new_cards: int
    current_card: CardStateResponse | None = None


class SessionDetailResponse(BaseModel):
    """A session snapshot together with the card awaiting an answer."""

    session: SessionStateResponse
    current_card: CardStateResponse | None = None


class AnswerRequest(BaseModel):
    """Request to submit an answer for the current card."""

    quality: int = Field(description="1=Again, 2=Hard, 3=Good, 4=Easy")
    response_time: int = Field(description="Milliseconds taken to answer")


class AnswerResponse(BaseModel):
    """Response after submitting an answer with the card's new schedule."""

    previous_state: CardStateResponse
    new_state: CardStateResponse
    session: SessionStateResponse
    current_card: CardStateResponse | None = None
    session_complete: bool


# --- Stats ---


class DayActivityResponse(_FromAttributes):
    date: date
    cards_studied: int
    reviews: int
    time_spent: int
    average_quality: float


class DeckStatsResponse(_FromAttributes):
    """Status breakdown and performance for one deck."""

    deck_id: int
    total_cards: int
    new_cards: int
    learning_cards: int
    review_cards: int
    completed_cards: int
    total_reviews: int
    total_sessions: int
    total_study_time: int
    average_session_time: float
    average_quality: float
    retention_rate: float
    difficulty_rating: float
    mastery_level: float
    last_studied_at: datetime | None = None


class GlobalStatsResponse(_FromAttributes):
    """Statistics across all decks."""

    total_decks: int
    total_cards: int
    new_cards: int
    learning_cards: int
    review_cards: int
    completed_cards: int
    total_reviews: int
    total_sessions: int
    total_study_time: int
    average_session_time: float
    average_quality: float
    retention_rate: float
    difficulty_rating: float
    mastery_level: float
    study_streak: int
    longest_streak: int
    daily_average: float
    weekly_average: float
    monthly_average: float
    recent_activity: list[DayActivityResponse]


class CardStatsResponse(_FromAttributes):
    card_id: int
    status: str
    total_reviews: int
    correct_answers: int
    average_quality: float
    average_response_time: float
    retention_rate: float
    ease_factor: float
    interval: float
    repetitions: int
    last_review_date: datetime | None = None
    next_review_date: datetime | None = None
    difficulty_level: str
    mastery_score: float


class QualityPointResponse(_FromAttributes):
    reviewed_at: datetime
    quality: int


class ResponseTimePointResponse(_FromAttributes):
    reviewed_at: datetime
    response_time: int


class LearningCurveResponse(_FromAttributes):
    card_id: int
    quality_progression: list[QualityPointResponse]
    response_time_progression: list[ResponseTimePointResponse]
    improvement_trend: str
    trend_slope: float
    mastery_score: float


class DailyProgressResponse(_FromAttributes):
    date: date
    cards_studied: int
    reviews_completed: int
    time_spent: int
    average_quality: float
    cards_goal: int
    time_goal: int


class WeeklyTrendResponse(_FromAttributes):
    week_start: date
    week_end: date
    daily_data: list[DayActivityResponse]
    total_cards: int
    total_time: int
    average_daily: float
    best_day: date | None = None
    consistency: float


class BestWeekResponse(_FromAttributes):
    week_start: date
    cards_studied: int


class MonthlyReportResponse(_FromAttributes):
    year: int
    month: int
    total_reviews: int
    total_sessions: int
    total_cards_studied: int
    total_time_spent: int
    average_reviews_per_day: float
    average_cards_per_day: float
    retention_rate: float
    study_days: int
    best_week: BestWeekResponse | None = None
    achievements: list[str]
    recommendations: list[str]


class TrendPointResponse(_FromAttributes):
    period_start: date
    value: int


class TrendResponse(_FromAttributes):
    deck_id: int
    period: str
    data_points: list[TrendPointResponse]
    total: int
    average: float
    trend: str


class DailyGoalsResponse(_FromAttributes):
    cards_goal: int
    time_goal: int
    streak_goal: int
    cards_completed: int
    time_completed: float
    current_streak: int
    total_achievements: int
    progress_date: date | None = None


class GoalUpdateRequest(BaseModel):
    """Request to change one daily goal."""

    kind: Literal["cards", "time", "streak"]
    value: int


class MilestoneResponse(_FromAttributes):
    kind: str
    target: int
    current: int
    remaining: int


class GoalAchievementResponse(_FromAttributes):
    date: date
    cards_goal_achieved: bool
    time_goal_achieved: bool
    streak_goal_achieved: bool
    overall_progress: float
    achievements: list[str]
    next_milestone: MilestoneResponse | None = None
