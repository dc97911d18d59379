"""
Statistics aggregator: turns review history into learning metrics.

Pure computation over a HistoryRepository snapshot: nothing here mutates
events or scheduling state. Goal targets and the progress recorded against
them are the only things written back, through the repository.
"""

import calendar
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from zoneinfo import ZoneInfo

from backend.config import settings, utcnow
from backend.errors import (
    CardNotFound,
    DeckNotFound,
    FlashcardError,
    GoalValueInvalid,
    InvalidTimeRange,
    StatsCalculationFailed,
)
from backend.srs.sm2 import MIN_EASE_FACTOR, SchedulingState

from .fold import (
    ReviewTotals,
    classify_trend,
    current_streak,
    fold_daily,
    fold_events,
    linear_slope,
    local_day,
    longest_streak,
)
from .models import (
    BestWeek,
    CardStatistics,
    CardStatus,
    DailyGoals,
    DailyProgress,
    DayActivity,
    DeckStatistics,
    GlobalStatistics,
    GoalAchievement,
    LearningCurve,
    Milestone,
    MonthlyReport,
    QualityPoint,
    ResponseTimePoint,
    TrendData,
    TrendPoint,
    WeeklyTrend,
)
from .repository import HistoryRepository

logger = logging.getLogger(__name__)

MS_PER_MINUTE = 60_000
MIN_TREND_REVIEWS = 3

# Upper bounds for daily goals, keyed by goal kind
GOAL_LIMITS = {
    "cards": 1000,
    "time": 1440,  # minutes in a day
    "streak": 365,
}
GOAL_FIELDS = {
    "cards": "cards_goal",
    "time": "time_goal",
    "streak": "streak_goal",
}

# Weights of the per-card mastery score
SCORE_RETENTION_WEIGHT = 0.5
SCORE_EASE_WEIGHT = 0.3
SCORE_RECENCY_WEIGHT = 0.2


@dataclass
class StatsConfig:
    """Thresholds and weights for card classification and mastery."""

    learning_repetitions: int = settings.learning_repetitions
    mastered_repetitions: int = settings.mastered_repetitions
    mastered_interval_days: float = settings.mastered_interval_days
    mastery_retention_weight: float = settings.mastery_retention_weight
    target_ease_factor: float = settings.target_ease_factor
    recency_half_life_days: float = settings.recency_half_life_days
    trend_tolerance: float = settings.trend_tolerance
    daily_window_days: int = settings.daily_window_days
    weekly_window_weeks: int = settings.weekly_window_weeks
    monthly_window_months: int = settings.monthly_window_months
    timezone: str | tzinfo = settings.timezone


def _resolve_zone(zone: str | tzinfo) -> tzinfo:
    if isinstance(zone, tzinfo):
        return zone
    if zone.upper() == "UTC":
        return UTC
    return ZoneInfo(zone)


def _day_start(day: date, zone: tzinfo) -> datetime:
    """Local midnight of ``day`` as a naive-UTC timestamp."""
    return datetime.combine(day, time.min, tzinfo=zone).astimezone(UTC).replace(tzinfo=None)


def _add_months(day: date, months: int) -> date:
    """Return the first day of the month ``months`` away from ``day``."""
    index = day.year * 12 + day.month - 1 + months
    return date(index // 12, index % 12 + 1, 1)


def _day_activity(day: date, totals: ReviewTotals | None) -> DayActivity:
    if totals is None:
        return DayActivity(date=day)
    return DayActivity(
        date=day,
        cards_studied=len(totals.card_ids),
        reviews=totals.reviews,
        time_spent=totals.response_time,
        average_quality=totals.average_quality,
    )


class StatisticsAggregator:
    """
    Computes deck, global and per-card analytics plus daily goal progress.

    Depends on the HistoryRepository abstraction and an injected clock, so
    the same logic runs over a database snapshot or hand-built test data.
    """

    def __init__(
        self,
        repository: HistoryRepository,
        config: StatsConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            repository: Source of review events, card state and goals.
            config: Optional thresholds; defaults come from settings.
            clock: Returns naive-UTC "now". Calendar days are its date in the
                configured timezone.
        """
        self._repo = repository
        self._config = config or StatsConfig()
        self._zone = _resolve_zone(self._config.timezone)
        self._clock = clock

    @contextmanager
    def _calculating(self, operation: str) -> Iterator[None]:
        try:
            yield
        except FlashcardError:
            raise
        except Exception as exc:
            logger.exception("Statistics operation %s failed", operation)
            raise StatsCalculationFailed(operation, exc) from exc

    # --- Classification and scoring ---

    def classify(self, state: SchedulingState, reviewed: bool = False) -> CardStatus:
        """Place a card in exactly one of new / learning / review / completed."""
        cfg = self._config
        if state.is_new and not reviewed:
            return "new"
        if state.repetitions < cfg.learning_repetitions:
            return "learning"
        if state.repetitions >= cfg.mastered_repetitions and state.interval >= cfg.mastered_interval_days:
            return "completed"
        return "review"

    def _status_counts(self, states: list[SchedulingState], reviewed_ids: set[int]) -> dict[str, int]:
        counts = {"new": 0, "learning": 0, "review": 0, "completed": 0}
        for state in states:
            counts[self.classify(state, state.card_id in reviewed_ids)] += 1
        return counts

    def ease_proximity(self, ease_factor: float) -> float:
        """How close an ease factor is to the target, scaled to [0, 1]."""
        span = self._config.target_ease_factor - MIN_EASE_FACTOR
        if span <= 0:
            return 1.0
        return min(1.0, max(0.0, (ease_factor - MIN_EASE_FACTOR) / span))

    def mastery_level(self, totals: ReviewTotals, states: list[SchedulingState]) -> float:
        """Weighted retention plus mean ease-factor proximity of reviewed cards, in [0, 1]."""
        reviewed = [s for s in states if not s.is_new or s.card_id in totals.card_ids]
        if totals.reviews == 0 and not reviewed:
            return 0.0
        ease = sum(self.ease_proximity(s.ease_factor) for s in reviewed) / len(reviewed) if reviewed else 0.0
        weight = self._config.mastery_retention_weight
        level = weight * totals.retention_rate + (1 - weight) * ease
        return min(1.0, max(0.0, level))

    def mastery_score(self, state: SchedulingState, totals: ReviewTotals) -> float:
        """Per-card mastery in [0, 100] from retention, ease factor and recency."""
        if totals.reviews == 0 or totals.last_review is None:
            return 0.0
        days_since = max(0.0, (self._clock() - totals.last_review).total_seconds() / 86400)
        recency = 0.5 ** (days_since / self._config.recency_half_life_days)
        score = 100 * (
            SCORE_RETENTION_WEIGHT * totals.retention_rate
            + SCORE_EASE_WEIGHT * self.ease_proximity(state.ease_factor)
            + SCORE_RECENCY_WEIGHT * recency
        )
        return round(min(100.0, max(0.0, score)), 2)

    # --- Deck and global ---

    def get_deck_statistics(self, deck_id: int) -> DeckStatistics:
        """Status breakdown and performance metrics for one deck.

        Raises:
            DeckNotFound: If the deck is unknown.
        """
        if not self._repo.has_deck(deck_id):
            raise DeckNotFound(deck_id)

        with self._calculating("get deck statistics"):
            states = self._repo.card_states(deck_id)
            totals = fold_events(self._repo.iter_events(deck_id=deck_id), zone=self._zone)
            counts = self._status_counts(states, totals.card_ids)

            return DeckStatistics(
                deck_id=deck_id,
                total_cards=len(states),
                new_cards=counts["new"],
                learning_cards=counts["learning"],
                review_cards=counts["review"],
                completed_cards=counts["completed"],
                total_reviews=totals.reviews,
                total_sessions=totals.sessions,
                total_study_time=totals.response_time,
                average_session_time=totals.average_session_time,
                average_quality=totals.average_quality,
                retention_rate=totals.retention_rate,
                difficulty_rating=totals.low_quality_rate,
                mastery_level=self.mastery_level(totals, states),
                last_studied_at=totals.last_review,
            )

    def get_global_statistics(self) -> GlobalStatistics:
        """Metrics across every deck, with streaks and trailing-window averages."""
        with self._calculating("get global statistics"):
            cfg = self._config
            today = self._local_today()
            states = self._repo.card_states()
            totals, by_day = fold_daily(self._repo.iter_events(), self._zone)
            counts = self._status_counts(states, totals.card_ids)

            def reviews_since(days: int) -> int:
                first = today - timedelta(days=days - 1)
                return sum(t.reviews for d, t in by_day.items() if first <= d <= today)

            daily_days = cfg.daily_window_days
            weekly_days = cfg.weekly_window_weeks * 7
            monthly_days = cfg.monthly_window_months * 30

            recent = [today - timedelta(days=offset) for offset in range(6, -1, -1)]

            return GlobalStatistics(
                total_decks=len(self._repo.deck_ids()),
                total_cards=len(states),
                new_cards=counts["new"],
                learning_cards=counts["learning"],
                review_cards=counts["review"],
                completed_cards=counts["completed"],
                total_reviews=totals.reviews,
                total_sessions=totals.sessions,
                total_study_time=totals.response_time,
                average_session_time=totals.average_session_time,
                average_quality=totals.average_quality,
                retention_rate=totals.retention_rate,
                difficulty_rating=totals.low_quality_rate,
                mastery_level=self.mastery_level(totals, states),
                study_streak=current_streak(totals.study_days, today),
                longest_streak=longest_streak(totals.study_days),
                daily_average=reviews_since(daily_days) / daily_days,
                weekly_average=reviews_since(weekly_days) / cfg.weekly_window_weeks,
                monthly_average=reviews_since(monthly_days) / cfg.monthly_window_months,
                recent_activity=[_day_activity(d, by_day.get(d)) for d in recent],
            )

    def get_deck_trend(self, deck_id: int, time_range: str) -> TrendData:
        """Review counts for a deck bucketed by day (week, month) or month (year).

        Raises:
            DeckNotFound: If the deck is unknown.
            InvalidTimeRange: If time_range is not week, month or year.
        """
        if time_range not in ("week", "month", "year"):
            raise InvalidTimeRange(f"Unknown time range {time_range!r}", time_range=time_range)
        if not self._repo.has_deck(deck_id):
            raise DeckNotFound(deck_id)

        with self._calculating("get deck trend"):
            today = self._local_today()
            if time_range == "year":
                starts = [_add_months(today, -offset) for offset in range(11, -1, -1)]
                end = _add_months(today, 1)
            else:
                days = 7 if time_range == "week" else 30
                starts = [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]
                end = today + timedelta(days=1)

            values = [0] * len(starts)
            events = self._repo.iter_events(
                deck_id=deck_id,
                start=_day_start(starts[0], self._zone),
                end=_day_start(end, self._zone),
            )
            for event in events:
                day = local_day(event.reviewed_at, self._zone)
                # Buckets are ascending; the last start not after the day owns it
                index = max(i for i, start in enumerate(starts) if start <= day)
                values[index] += 1

            total = sum(values)
            return TrendData(
                deck_id=deck_id,
                period=time_range,  # type: ignore[arg-type]
                data_points=[TrendPoint(period_start=s, value=v) for s, v in zip(starts, values, strict=True)],
                total=total,
                average=total / len(values),
                trend=classify_trend(linear_slope([float(v) for v in values]), self._config.trend_tolerance),
            )

    # --- Per card ---

    def _card(self, card_id: int) -> SchedulingState:
        state = self._repo.card_state(card_id)
        if state is None:
            raise CardNotFound(card_id)
        return state

    def get_card_statistics(self, card_id: int) -> CardStatistics:
        """Review totals and current schedule for one card.

        Raises:
            CardNotFound: If the card is unknown.
        """
        state = self._card(card_id)
        with self._calculating("get card statistics"):
            totals = fold_events(self._repo.iter_events(card_id=card_id), zone=self._zone)
            average = totals.average_quality
            if totals.reviews == 0:
                difficulty = "medium"
            elif average >= 3.5:
                difficulty = "easy"
            elif average >= 2.5:
                difficulty = "medium"
            else:
                difficulty = "hard"

            return CardStatistics(
                card_id=card_id,
                status=self.classify(state, totals.reviews > 0),
                total_reviews=totals.reviews,
                correct_answers=totals.correct,
                average_quality=average,
                average_response_time=totals.average_response_time,
                retention_rate=totals.retention_rate,
                ease_factor=state.ease_factor,
                interval=state.interval,
                repetitions=state.repetitions,
                last_review_date=state.last_review_date or totals.last_review,
                next_review_date=state.next_review_date,
                difficulty_level=difficulty,
                mastery_score=self.mastery_score(state, totals),
            )

    def get_card_learning_curve(self, card_id: int) -> LearningCurve:
        """Chronological quality and response-time progression with a trend.

        The trend is the least-squares slope of quality per review; fewer than
        three reviews is always stable.

        Raises:
            CardNotFound: If the card is unknown.
        """
        state = self._card(card_id)
        with self._calculating("get card learning curve"):
            totals = ReviewTotals(zone=self._zone)
            qualities: list[QualityPoint] = []
            response_times: list[ResponseTimePoint] = []
            for event in self._repo.iter_events(card_id=card_id):
                totals.add(event)
                qualities.append(QualityPoint(event.reviewed_at, event.quality))
                response_times.append(ResponseTimePoint(event.reviewed_at, event.response_time))

            slope = 0.0
            if len(qualities) >= MIN_TREND_REVIEWS:
                slope = linear_slope([float(p.quality) for p in qualities])

            return LearningCurve(
                card_id=card_id,
                quality_progression=qualities,
                response_time_progression=response_times,
                improvement_trend=classify_trend(slope, self._config.trend_tolerance),
                trend_slope=slope,
                mastery_score=self.mastery_score(state, totals),
            )

    # --- Daily, weekly, monthly ---

    def _local_today(self) -> date:
        return local_day(self._clock(), self._zone)

    def _today(self) -> tuple[date, datetime, datetime]:
        """Today's local date and its bounds as naive-UTC timestamps."""
        today = self._local_today()
        return today, _day_start(today, self._zone), _day_start(today + timedelta(days=1), self._zone)

    def get_daily_progress(self) -> DailyProgress:
        """Today's cards, reviews and time against the daily goals."""
        with self._calculating("get daily progress"):
            today, start, end = self._today()
            goals = self._repo.get_goals()
            totals = fold_events(self._repo.iter_events(start=start, end=end), zone=self._zone)
            return DailyProgress(
                date=today,
                cards_studied=len(totals.card_ids),
                reviews_completed=totals.reviews,
                time_spent=totals.response_time,
                average_quality=totals.average_quality,
                cards_goal=goals.cards_goal,
                time_goal=goals.time_goal,
            )

    def get_weekly_trend(self) -> WeeklyTrend:
        """Seven daily buckets ending today."""
        with self._calculating("get weekly trend"):
            today, _, end = self._today()
            week_start = today - timedelta(days=6)
            _, by_day = fold_daily(self._repo.iter_events(start=_day_start(week_start, self._zone), end=end), self._zone)

            daily = [_day_activity(week_start + timedelta(days=i), by_day.get(week_start + timedelta(days=i))) for i in range(7)]
            total_cards = sum(d.cards_studied for d in daily)
            best = max(daily, key=lambda d: d.cards_studied)

            return WeeklyTrend(
                week_start=week_start,
                week_end=today,
                daily_data=daily,
                total_cards=total_cards,
                total_time=sum(d.time_spent for d in daily),
                average_daily=total_cards / 7,
                best_day=best.date if best.cards_studied > 0 else None,
                consistency=sum(1 for d in daily if d.cards_studied > 0) / 7,
            )

    def get_monthly_report(self) -> MonthlyReport:
        """Totals, best week and recommendations for the current calendar month."""
        with self._calculating("get monthly report"):
            today = self._local_today()
            month_start = today.replace(day=1)
            month_end = _add_months(today, 1)
            days_in_month = calendar.monthrange(today.year, today.month)[1]

            totals, by_day = fold_daily(
                self._repo.iter_events(
                    start=_day_start(month_start, self._zone),
                    end=_day_start(month_end, self._zone),
                ),
                self._zone,
            )

            weeks: dict[date, set[int]] = {}
            for day, day_totals in by_day.items():
                week_start = day - timedelta(days=day.weekday())
                weeks.setdefault(week_start, set()).update(day_totals.card_ids)
            best_week = None
            if weeks:
                start, cards = max(weeks.items(), key=lambda item: len(item[1]))
                best_week = BestWeek(week_start=start, cards_studied=len(cards))

            achievements = []
            if totals.sessions:
                achievements.append(f"Completed {totals.sessions} study sessions")
            if totals.card_ids:
                achievements.append(f"Studied {len(totals.card_ids)} cards")
            month_streak = longest_streak(totals.study_days)
            if month_streak >= 7:
                achievements.append(f"Studied {month_streak} days in a row")

            return MonthlyReport(
                year=today.year,
                month=today.month,
                total_reviews=totals.reviews,
                total_sessions=totals.sessions,
                total_cards_studied=len(totals.card_ids),
                total_time_spent=totals.response_time,
                average_reviews_per_day=totals.reviews / days_in_month,
                average_cards_per_day=len(totals.card_ids) / days_in_month,
                retention_rate=totals.retention_rate,
                study_days=len(totals.study_days),
                best_week=best_week,
                achievements=achievements,
                recommendations=self._recommendations(totals, days_elapsed=today.day),
            )

    def _recommendations(self, totals: ReviewTotals, days_elapsed: int) -> list[str]:
        if totals.reviews == 0:
            return ["Start with a short session to build a study habit"]
        recommendations = []
        if totals.retention_rate < 0.8:
            recommendations.append(
                f"Retention is {totals.retention_rate:.0%}; spend more time on the cards you miss"
            )
        if len(totals.study_days) / days_elapsed < 0.5:
            recommendations.append("Study a little every day to keep a consistent pattern")
        if not recommendations:
            recommendations.append("Keep up the consistent study pattern")
        return recommendations

    # --- Goals ---

    def get_daily_goals(self) -> DailyGoals:
        """Goal targets plus the progress recorded by the last check.

        Progress recorded on an earlier day does not describe today and reads
        as zero until the next check.
        """
        goals = self._repo.get_goals()
        if goals.progress_date is None or goals.progress_date == self._local_today():
            return goals
        return replace(
            goals,
            cards_completed=0,
            time_completed=0.0,
            current_streak=0,
            total_achievements=0,
            progress_date=None,
        )

    def set_daily_goal(self, kind: str, value: int) -> DailyGoals:
        """Change one daily target.

        Raises:
            GoalValueInvalid: Unknown kind, or value not a positive whole number
                within the kind's limit.
        """
        if kind not in GOAL_LIMITS:
            raise GoalValueInvalid(kind, value, f"kind must be one of {', '.join(GOAL_LIMITS)}")
        if isinstance(value, bool) or not isinstance(value, int):
            raise GoalValueInvalid(kind, value, "value must be a whole number")
        if value <= 0:
            raise GoalValueInvalid(kind, value, "value must be positive")
        if value > GOAL_LIMITS[kind]:
            raise GoalValueInvalid(kind, value, f"value cannot exceed {GOAL_LIMITS[kind]}")

        goals = replace(self.get_daily_goals(), **{GOAL_FIELDS[kind]: value})
        self._repo.save_goals(goals)
        logger.info("Set %s goal to %d", kind, value)
        return goals

    def check_goal_achievement(self) -> GoalAchievement:
        """Recompute today's progress against the goals and record it."""
        with self._calculating("check goal achievement"):
            today, start, end = self._today()
            goals = self._repo.get_goals()
            totals = fold_events(self._repo.iter_events(start=start, end=end), zone=self._zone)
            study_days = {local_day(e.reviewed_at, self._zone) for e in self._repo.iter_events(end=end)}

            cards = len(totals.card_ids)
            time_ms = totals.response_time
            time_goal_ms = goals.time_goal * MS_PER_MINUTE
            minutes = round(time_ms / MS_PER_MINUTE)
            streak = current_streak(study_days, today)

            cards_achieved = cards >= goals.cards_goal
            time_achieved = time_ms >= time_goal_ms
            streak_achieved = streak >= goals.streak_goal

            achievements = []
            if cards_achieved:
                achievements.append(f"Daily card goal reached: {cards}/{goals.cards_goal}")
            if time_achieved:
                achievements.append(f"Daily time goal reached: {minutes}/{goals.time_goal} minutes")
            if streak_achieved:
                achievements.append(f"Study streak goal reached: {streak} days")

            cards_progress = min(1.0, cards / goals.cards_goal)
            time_progress = min(1.0, time_ms / time_goal_ms)
            overall = min(100.0, (cards_progress + time_progress) / 2 * 100)

            milestone = None
            if not cards_achieved:
                milestone = Milestone("cards", goals.cards_goal, cards, goals.cards_goal - cards)
            elif not time_achieved:
                milestone = Milestone("time", goals.time_goal, minutes, max(0, goals.time_goal - minutes))

            self._repo.save_goals(
                replace(
                    goals,
                    cards_completed=cards,
                    time_completed=time_ms / MS_PER_MINUTE,
                    current_streak=streak,
                    total_achievements=len(achievements),
                    progress_date=today,
                )
            )

            return GoalAchievement(
                date=today,
                cards_goal_achieved=cards_achieved,
                time_goal_achieved=time_achieved,
                streak_goal_achieved=streak_achieved,
                overall_progress=overall,
                achievements=achievements,
                next_milestone=milestone,
            )
