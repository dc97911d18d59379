"""API routes for study statistics and daily goals.

Each request loads a snapshot of the review history and runs the
aggregator over it.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.schemas import (
    CardStatsResponse,
    DailyGoalsResponse,
    DailyProgressResponse,
    DeckStatsResponse,
    GlobalStatsResponse,
    GoalAchievementResponse,
    GoalUpdateRequest,
    LearningCurveResponse,
    MonthlyReportResponse,
    TrendResponse,
    WeeklyTrendResponse,
)
from backend.database import get_session
from backend.stats.aggregator import StatisticsAggregator
from backend.stats.repository import load_history, store_goals

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stats", tags=["stats"])


async def get_aggregator(db: AsyncSession = Depends(get_session)) -> StatisticsAggregator:
    """Build an aggregator over a fresh history snapshot."""
    return StatisticsAggregator(await load_history(db))


@router.get("/global", response_model=GlobalStatsResponse)
async def global_stats(
    aggregator: StatisticsAggregator = Depends(get_aggregator),
) -> GlobalStatsResponse:
    """Get statistics across every deck."""
    return GlobalStatsResponse.model_validate(aggregator.get_global_statistics())


@router.get("/deck/{deck_id}", response_model=DeckStatsResponse)
async def deck_stats(
    deck_id: int,
    aggregator: StatisticsAggregator = Depends(get_aggregator),
) -> DeckStatsResponse:
    return DeckStatsResponse.model_validate(aggregator.get_deck_statistics(deck_id))


@router.get("/deck/{deck_id}/trend", response_model=TrendResponse)
async def deck_trend(
    deck_id: int,
    time_range: str = "week",
    aggregator: StatisticsAggregator = Depends(get_aggregator),
) -> TrendResponse:
    """Get review counts for a deck over the last week, month or year."""
    return TrendResponse.model_validate(aggregator.get_deck_trend(deck_id, time_range))


@router.get("/card/{card_id}", response_model=CardStatsResponse)
async def card_stats(
    card_id: int,
    aggregator: StatisticsAggregator = Depends(get_aggregator),
) -> CardStatsResponse:
    return CardStatsResponse.model_validate(aggregator.get_card_statistics(card_id))


@router.get("/card/{card_id}/curve", response_model=LearningCurveResponse)
async def card_curve(
    card_id: int,
    aggregator: StatisticsAggregator = Depends(get_aggregator),
) -> LearningCurveResponse:
    """Get the card's quality and response-time progression."""
    return LearningCurveResponse.model_validate(aggregator.get_card_learning_curve(card_id))


@router.get("/daily", response_model=DailyProgressResponse)
async def daily_progress(
    aggregator: StatisticsAggregator = Depends(get_aggregator),
) -> DailyProgressResponse:
    return DailyProgressResponse.model_validate(aggregator.get_daily_progress())


@router.get("/weekly", response_model=WeeklyTrendResponse)
async def weekly_trend(
    aggregator: StatisticsAggregator = Depends(get_aggregator),
) -> WeeklyTrendResponse:
    return WeeklyTrendResponse.model_validate(aggregator.get_weekly_trend())


@router.get("/monthly", response_model=MonthlyReportResponse)
async def monthly_report(
    aggregator: StatisticsAggregator = Depends(get_aggregator),
) -> MonthlyReportResponse:
    return MonthlyReportResponse.model_validate(aggregator.get_monthly_report())


@router.get("/goals", response_model=DailyGoalsResponse)
async def get_goals(
    aggregator: StatisticsAggregator = Depends(get_aggregator),
) -> DailyGoalsResponse:
    return DailyGoalsResponse.model_validate(aggregator.get_daily_goals())


@router.put("/goals", response_model=DailyGoalsResponse)
async def set_goal(
    request: GoalUpdateRequest,
    db: AsyncSession = Depends(get_session),
    aggregator: StatisticsAggregator = Depends(get_aggregator),
) -> DailyGoalsResponse:
    """Change one daily goal and persist it."""
    goals = aggregator.set_daily_goal(request.kind, request.value)
    await store_goals(db, goals)
    return DailyGoalsResponse.model_validate(goals)


@router.get("/goals/check", response_model=GoalAchievementResponse)
async def check_goals(
    db: AsyncSession = Depends(get_session),
    aggregator: StatisticsAggregator = Depends(get_aggregator),
) -> GoalAchievementResponse:
    """Check today's progress against the daily goals and record it."""
    achievement = aggregator.check_goal_achievement()
    await store_goals(db, aggregator.get_daily_goals())
    logger.debug("Recorded goal progress: %.1f%%", achievement.overall_progress)
    return GoalAchievementResponse.model_validate(achievement)
