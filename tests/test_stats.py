"""Tests for the statistics aggregator over an in-memory review history."""

from datetime import date, datetime, timedelta, timezone

import pytest

from backend.errors import (
    CardNotFound,
    DeckNotFound,
    GoalValueInvalid,
    InvalidTimeRange,
    StatsCalculationFailed,
)
from backend.srs.sm2 import SchedulingState, initial_state
from backend.stats.aggregator import StatisticsAggregator, StatsConfig
from backend.stats.fold import (
    classify_trend,
    current_streak,
    fold_events,
    linear_slope,
    local_day,
    longest_streak,
)
from backend.stats.models import DailyGoals, ReviewEvent
from backend.stats.repository import InMemoryHistory

NOW = datetime(2024, 5, 15, 18, 0)  # a Wednesday
TODAY = NOW.date()
EASTERN = timezone(timedelta(hours=-5))


def event(
    card_id: int,
    reviewed_at: datetime,
    quality: int,
    response_time: int = 1000,
    session_id: str | None = "s1",
) -> ReviewEvent:
    return ReviewEvent(
        card_id=card_id,
        reviewed_at=reviewed_at,
        quality=quality,
        response_time=response_time,
        ease_factor=2.5,
        interval=1.0,
        session_id=session_id,
    )


def reviewed(card_id: int, repetitions: int, interval: float, ease_factor: float = 2.5) -> SchedulingState:
    return SchedulingState(
        card_id=card_id,
        ease_factor=ease_factor,
        interval=interval,
        repetitions=repetitions,
        last_review_date=NOW - timedelta(days=1),
        next_review_date=NOW + timedelta(days=interval),
    )


def days_ago(days: int, hour: int = 9) -> datetime:
    return datetime.combine(TODAY - timedelta(days=days), datetime.min.time()).replace(hour=hour)


# --- Fold helpers ---


class TestFold:
    def test_quality_scenario(self) -> None:
        totals = fold_events(event(1, NOW, q) for q in (3, 4, 2))
        assert totals.average_quality == 3
        assert totals.retention_rate == pytest.approx(2 / 3)
        assert totals.low_quality_rate == pytest.approx(1 / 3)

    def test_empty_totals(self) -> None:
        totals = fold_events([])
        assert totals.reviews == 0
        assert totals.average_quality == 0.0
        assert totals.retention_rate == 0.0
        assert totals.average_session_time == 0.0

    def test_streaks(self) -> None:
        days = [TODAY, TODAY - timedelta(days=1), TODAY - timedelta(days=5), TODAY - timedelta(days=6)]
        assert current_streak(days, TODAY) == 2
        assert current_streak(days, TODAY + timedelta(days=1)) == 0
        assert longest_streak(days) == 2
        assert longest_streak([]) == 0

    def test_trend_classification(self) -> None:
        assert linear_slope([1, 2, 3, 4]) == pytest.approx(1.0)
        assert linear_slope([5]) == 0.0
        assert classify_trend(0.5, 0.05) == "improving"
        assert classify_trend(-0.5, 0.05) == "declining"
        assert classify_trend(0.01, 0.05) == "stable"

    def test_local_day(self) -> None:
        late = datetime(2024, 5, 6, 1, 30)
        assert local_day(late) == date(2024, 5, 6)
        assert local_day(late, EASTERN) == date(2024, 5, 5)
        assert local_day(late, timezone(timedelta(hours=9))) == date(2024, 5, 6)


# --- Deck statistics ---


class TestDeckStatistics:
    def setup_method(self) -> None:
        self.history = InMemoryHistory()
        self.history.add_card(1, reviewed(1, repetitions=1, interval=1))
        self.history.add_card(1, initial_state(2))
        self.history.add_card(1, reviewed(3, repetitions=5, interval=30))
        self.history.add_card(2, initial_state(4))
        self.history.add_events(
            [
                event(1, days_ago(0, 9), 3),
                event(1, days_ago(0, 10), 4),
                event(3, days_ago(0, 11), 2),
            ]
        )
        self.aggregator = StatisticsAggregator(self.history, clock=lambda: NOW)

    def test_quality_and_retention(self) -> None:
        stats = self.aggregator.get_deck_statistics(1)
        assert stats.total_reviews == 3
        assert stats.average_quality == 3
        assert stats.retention_rate == pytest.approx(2 / 3)
        assert stats.difficulty_rating == pytest.approx(1 / 3)

    def test_card_classification(self) -> None:
        stats = self.aggregator.get_deck_statistics(1)
        assert stats.total_cards == 3
        assert stats.new_cards == 1
        assert stats.learning_cards == 1
        assert stats.review_cards == 0
        assert stats.completed_cards == 1
        assert stats.new_cards + stats.learning_cards + stats.review_cards + stats.completed_cards == stats.total_cards

    def test_sessions_and_time(self) -> None:
        stats = self.aggregator.get_deck_statistics(1)
        assert stats.total_sessions == 1
        assert stats.total_study_time == 3000
        assert stats.average_session_time == 3000
        assert stats.last_studied_at == days_ago(0, 11)

    def test_mastery_level(self) -> None:
        stats = self.aggregator.get_deck_statistics(1)
        # Both reviewed cards sit at the target ease factor
        assert stats.mastery_level == pytest.approx(0.7 * (2 / 3) + 0.3)
        assert 0.0 <= stats.mastery_level <= 1.0

    def test_untouched_deck(self) -> None:
        stats = self.aggregator.get_deck_statistics(2)
        assert stats.total_cards == 1
        assert stats.new_cards == 1
        assert stats.total_reviews == 0
        assert stats.mastery_level == 0.0
        assert stats.last_studied_at is None

    def test_unknown_deck(self) -> None:
        with pytest.raises(DeckNotFound):
            self.aggregator.get_deck_statistics(99)

    def test_review_class_uses_thresholds(self) -> None:
        self.history.update_card(reviewed(1, repetitions=3, interval=10))
        assert self.aggregator.get_deck_statistics(1).review_cards == 1

        strict = StatisticsAggregator(self.history, config=StatsConfig(mastered_interval_days=60), clock=lambda: NOW)
        stats = strict.get_deck_statistics(1)
        assert stats.completed_cards == 0
        assert stats.review_cards == 2

    def test_history_is_not_mutated(self) -> None:
        before = list(self.history.iter_events())
        self.aggregator.get_deck_statistics(1)
        self.aggregator.get_global_statistics()
        assert list(self.history.iter_events()) == before


# --- Global statistics ---


class TestGlobalStatistics:
    def setup_method(self) -> None:
        self.history = InMemoryHistory()
        self.history.add_card(1, reviewed(1, repetitions=2, interval=6))
        self.history.add_card(2, initial_state(2))
        study_days = [0, 1, 2, 7, 8, 9, 10]
        self.history.add_events(event(1, days_ago(d), 3, session_id=f"s{d}") for d in study_days)
        self.aggregator = StatisticsAggregator(self.history, clock=lambda: NOW)

    def test_totals(self) -> None:
        stats = self.aggregator.get_global_statistics()
        assert stats.total_decks == 2
        assert stats.total_cards == 2
        assert stats.total_reviews == 7
        assert stats.total_sessions == 7
        assert stats.retention_rate == 1.0
        assert stats.review_cards == 1
        assert stats.new_cards == 1

    def test_streaks(self) -> None:
        stats = self.aggregator.get_global_statistics()
        assert stats.study_streak == 3
        assert stats.longest_streak == 4

    def test_streak_broken_without_study_today(self) -> None:
        tomorrow = StatisticsAggregator(self.history, clock=lambda: NOW + timedelta(days=2))
        assert tomorrow.get_global_statistics().study_streak == 0

    def test_trailing_averages(self) -> None:
        stats = self.aggregator.get_global_statistics()
        assert stats.daily_average == pytest.approx(3 / 7)
        assert stats.weekly_average == pytest.approx(7 / 4)
        assert stats.monthly_average == pytest.approx(7 / 3)

    def test_recent_activity(self) -> None:
        activity = self.aggregator.get_global_statistics().recent_activity
        assert len(activity) == 7
        assert activity[-1].date == TODAY
        assert activity[0].date == TODAY - timedelta(days=6)
        assert [a.reviews for a in activity] == [0, 0, 0, 0, 1, 1, 1]

    def test_empty_history(self) -> None:
        stats = StatisticsAggregator(InMemoryHistory(), clock=lambda: NOW).get_global_statistics()
        assert stats.total_decks == 0
        assert stats.total_reviews == 0
        assert stats.study_streak == 0
        assert stats.mastery_level == 0.0


# --- Card statistics and learning curve ---


class TestCardStatistics:
    def setup_method(self) -> None:
        self.history = InMemoryHistory()
        self.history.add_card(1, reviewed(1, repetitions=2, interval=6, ease_factor=2.36))
        self.history.add_card(1, reviewed(2, repetitions=1, interval=1))
        self.history.add_card(1, initial_state(3))
        # Added out of order; curves must still be chronological
        self.history.add_events(
            [
                event(1, days_ago(1), 3, response_time=2000),
                event(1, days_ago(3), 1, response_time=5000),
                event(1, days_ago(0), 4, response_time=1000),
                event(1, days_ago(2), 2, response_time=4000),
                event(2, NOW, 4),
                event(2, NOW, 4),
            ]
        )
        self.aggregator = StatisticsAggregator(self.history, clock=lambda: NOW)

    def test_card_statistics(self) -> None:
        stats = self.aggregator.get_card_statistics(1)
        assert stats.status == "review"
        assert stats.total_reviews == 4
        assert stats.correct_answers == 2
        assert stats.average_quality == 2.5
        assert stats.average_response_time == 3000
        assert stats.retention_rate == 0.5
        assert stats.ease_factor == 2.36
        assert stats.interval == 6
        assert stats.difficulty_level == "medium"

    def test_learning_curve_is_chronological(self) -> None:
        curve = self.aggregator.get_card_learning_curve(1)
        assert [p.quality for p in curve.quality_progression] == [1, 2, 3, 4]
        assert [p.response_time for p in curve.response_time_progression] == [5000, 4000, 2000, 1000]
        assert curve.improvement_trend == "improving"
        assert curve.trend_slope == pytest.approx(1.0)

    def test_declining_curve(self) -> None:
        self.history.add_card(1, reviewed(5, repetitions=1, interval=1))
        self.history.add_events(event(5, days_ago(d), q) for d, q in ((3, 4), (2, 3), (1, 2)))
        assert self.aggregator.get_card_learning_curve(5).improvement_trend == "declining"

    def test_short_history_is_stable(self) -> None:
        curve = self.aggregator.get_card_learning_curve(2)
        assert len(curve.quality_progression) == 2
        assert curve.improvement_trend == "stable"

    def test_mastery_score_bounds(self) -> None:
        assert self.aggregator.get_card_statistics(2).mastery_score == pytest.approx(100.0)
        assert self.aggregator.get_card_statistics(3).mastery_score == 0.0
        score = self.aggregator.get_card_learning_curve(1).mastery_score
        assert 0.0 < score < 100.0

    def test_mastery_decays_with_time(self) -> None:
        later = StatisticsAggregator(self.history, clock=lambda: NOW + timedelta(days=60))
        assert later.get_card_statistics(2).mastery_score < self.aggregator.get_card_statistics(2).mastery_score

    def test_new_card(self) -> None:
        stats = self.aggregator.get_card_statistics(3)
        assert stats.status == "new"
        assert stats.total_reviews == 0
        assert stats.difficulty_level == "medium"
        assert self.aggregator.get_card_learning_curve(3).quality_progression == []

    def test_easy_card(self) -> None:
        assert self.aggregator.get_card_statistics(2).difficulty_level == "easy"

    def test_unknown_card(self) -> None:
        with pytest.raises(CardNotFound):
            self.aggregator.get_card_statistics(42)
        with pytest.raises(CardNotFound):
            self.aggregator.get_card_learning_curve(42)


# --- Time series ---


class TestTimeSeries:
    def setup_method(self) -> None:
        self.history = InMemoryHistory()
        for card_id in (1, 2, 3):
            self.history.add_card(1, reviewed(card_id, repetitions=1, interval=1))
        self.history.add_card(2, reviewed(4, repetitions=1, interval=1))
        self.aggregator = StatisticsAggregator(self.history, clock=lambda: NOW)

    def test_deck_trend_week(self) -> None:
        self.history.add_events(
            [
                event(1, days_ago(0, 8), 3),
                event(2, days_ago(0, 9), 3),
                event(1, days_ago(1), 3),
                event(3, days_ago(3), 3),
                event(1, days_ago(10), 3),
                event(4, days_ago(0), 3),  # other deck
            ]
        )
        trend = self.aggregator.get_deck_trend(1, "week")
        assert [p.value for p in trend.data_points] == [0, 0, 0, 1, 0, 1, 2]
        assert trend.data_points[0].period_start == TODAY - timedelta(days=6)
        assert trend.total == 4
        assert trend.average == pytest.approx(4 / 7)
        assert trend.trend == "improving"

    def test_deck_trend_month_and_year(self) -> None:
        self.history.add_events([event(1, days_ago(0), 3), event(1, days_ago(10), 3), event(2, days_ago(45), 3)])

        month = self.aggregator.get_deck_trend(1, "month")
        assert len(month.data_points) == 30
        assert month.total == 2

        year = self.aggregator.get_deck_trend(1, "year")
        assert len(year.data_points) == 12
        assert year.data_points[0].period_start == date(2023, 6, 1)
        assert year.data_points[-1].period_start == date(2024, 5, 1)
        assert year.data_points[-1].value == 2
        assert year.data_points[-2].value == 0
        assert year.data_points[-3].value == 1
        assert year.total == 3

    def test_deck_trend_rejects_unknown_range(self) -> None:
        with pytest.raises(InvalidTimeRange):
            self.aggregator.get_deck_trend(1, "decade")
        with pytest.raises(DeckNotFound):
            self.aggregator.get_deck_trend(99, "week")

    def test_daily_progress(self) -> None:
        self.history.add_events(
            [
                event(1, days_ago(0, 8), 3, response_time=60_000),
                event(1, days_ago(0, 9), 4, response_time=30_000),
                event(2, days_ago(0, 10), 2, response_time=30_000),
                event(3, days_ago(1), 3),
            ]
        )
        progress = self.aggregator.get_daily_progress()
        assert progress.date == TODAY
        assert progress.cards_studied == 2
        assert progress.reviews_completed == 3
        assert progress.time_spent == 120_000
        assert progress.average_quality == 3
        assert progress.cards_goal == 20
        assert progress.time_goal == 30

    def test_weekly_trend(self) -> None:
        self.history.add_events(
            [
                event(1, days_ago(0), 3),
                event(1, days_ago(2), 3),
                event(2, days_ago(2), 3),
                event(3, days_ago(2), 3),
                event(1, days_ago(8), 3),
            ]
        )
        trend = self.aggregator.get_weekly_trend()
        assert trend.week_start == TODAY - timedelta(days=6)
        assert trend.week_end == TODAY
        assert len(trend.daily_data) == 7
        assert trend.total_cards == 4
        assert trend.best_day == TODAY - timedelta(days=2)
        assert trend.consistency == pytest.approx(2 / 7)
        assert trend.average_daily == pytest.approx(4 / 7)

    def test_weekly_trend_without_study(self) -> None:
        trend = self.aggregator.get_weekly_trend()
        assert trend.best_day is None
        assert trend.consistency == 0.0

    def test_monthly_report(self) -> None:
        self.history.add_events(
            [
                event(1, datetime(2024, 4, 30, 9), 3, session_id="april"),
                event(1, datetime(2024, 5, 2, 9), 3, session_id="m1"),
                event(1, datetime(2024, 5, 13, 9), 3, session_id="m2"),
                event(2, datetime(2024, 5, 14, 9), 3, session_id="m2"),
                event(3, datetime(2024, 5, 15, 9), 3, session_id="m3"),
            ]
        )
        report = self.aggregator.get_monthly_report()
        assert (report.year, report.month) == (2024, 5)
        assert report.total_reviews == 4
        assert report.total_sessions == 3
        assert report.total_cards_studied == 3
        assert report.study_days == 4
        assert report.average_reviews_per_day == pytest.approx(4 / 31)
        assert report.retention_rate == 1.0
        assert report.best_week is not None
        assert report.best_week.week_start == date(2024, 5, 13)
        assert report.best_week.cards_studied == 3
        assert any("every day" in r for r in report.recommendations)
        assert not any("Retention" in r for r in report.recommendations)

    def test_monthly_report_low_retention(self) -> None:
        self.history.add_events(event(1, days_ago(d), 1) for d in range(10))
        report = self.aggregator.get_monthly_report()
        assert report.retention_rate == 0.0
        assert any("Retention" in r for r in report.recommendations)
        assert any("10 days in a row" in a for a in report.achievements)

    def test_invalid_window(self) -> None:
        with pytest.raises(InvalidTimeRange):
            list(self.history.iter_events(start=NOW, end=NOW - timedelta(days=1)))


# --- Goals ---


class TestGoals:
    def setup_method(self) -> None:
        self.history = InMemoryHistory(goals=DailyGoals(cards_goal=20, time_goal=30, streak_goal=7))
        for card_id in (1, 2, 3):
            self.history.add_card(1, reviewed(card_id, repetitions=1, interval=1))
        self.history.add_events(
            [
                event(1, days_ago(0, 8), 3, response_time=30_000),
                event(2, days_ago(0, 9), 3, response_time=30_000),
                event(3, days_ago(0, 10), 3, response_time=30_000),
                event(1, days_ago(1), 3),
            ]
        )
        self.aggregator = StatisticsAggregator(self.history, clock=lambda: NOW)

    def test_set_goal_persists(self) -> None:
        goals = self.aggregator.set_daily_goal("cards", 50)
        assert goals.cards_goal == 50
        assert self.history.get_goals().cards_goal == 50
        assert self.aggregator.get_daily_goals().time_goal == 30

    @pytest.mark.parametrize(
        ("kind", "value"),
        [("cards", 0), ("cards", -3), ("cards", 1001), ("time", 1441), ("streak", 366), ("bogus", 5), ("time", True)],
    )
    def test_set_goal_rejects(self, kind: str, value: int) -> None:
        with pytest.raises(GoalValueInvalid):
            self.aggregator.set_daily_goal(kind, value)
        assert self.history.get_goals().cards_goal == 20

    def test_partial_progress(self) -> None:
        result = self.aggregator.check_goal_achievement()
        assert result.date == TODAY
        assert not result.cards_goal_achieved
        assert not result.time_goal_achieved
        assert not result.streak_goal_achieved
        assert result.overall_progress == pytest.approx((3 / 20 + 1.5 / 30) / 2 * 100)
        assert result.next_milestone is not None
        assert result.next_milestone.kind == "cards"
        assert result.next_milestone.remaining == 17

    def test_goals_achieved(self) -> None:
        self.aggregator.set_daily_goal("cards", 2)
        self.aggregator.set_daily_goal("time", 1)
        self.aggregator.set_daily_goal("streak", 2)
        result = self.aggregator.check_goal_achievement()
        assert result.cards_goal_achieved
        assert result.time_goal_achieved
        assert result.streak_goal_achieved
        assert result.overall_progress == 100.0
        assert len(result.achievements) == 3
        assert result.next_milestone is None

    def test_check_refreshes_accumulators(self) -> None:
        self.aggregator.check_goal_achievement()
        goals = self.aggregator.get_daily_goals()
        assert goals.cards_completed == 3
        assert goals.time_completed == pytest.approx(1.5)
        assert goals.current_streak == 2
        assert goals.cards_goal == 20
        assert goals.progress_date == TODAY
        assert self.history.get_goals() == goals

    def test_progress_from_earlier_day_reads_zero(self) -> None:
        self.aggregator.check_goal_achievement()
        next_day = StatisticsAggregator(self.history, clock=lambda: NOW + timedelta(days=1))

        goals = next_day.get_daily_goals()
        assert goals.cards_completed == 0
        assert goals.time_completed == 0.0
        assert goals.current_streak == 0
        assert goals.progress_date is None
        assert goals.cards_goal == 20

        # Changing a target does not carry yesterday's progress forward
        assert next_day.set_daily_goal("cards", 10).cards_completed == 0


# --- Local calendar days ---


class TestLocalCalendarDay:
    """A UTC-5 user studying in the evening: the clock is already past UTC midnight."""

    def setup_method(self) -> None:
        self.now = datetime(2024, 5, 6, 2, 0)  # 21:00 on May 5 locally
        self.history = InMemoryHistory(goals=DailyGoals(cards_goal=5, time_goal=30, streak_goal=2))
        for card_id in (1, 2):
            self.history.add_card(1, reviewed(card_id, repetitions=1, interval=1))
        self.history.add_events(
            [
                event(1, datetime(2024, 5, 4, 12, 0), 3),  # May 4, 07:00 local
                event(2, datetime(2024, 5, 5, 3, 0), 3),  # May 4, 22:00 local
                event(1, datetime(2024, 5, 6, 1, 30), 4),  # May 5, 20:30 local
            ]
        )
        config = StatsConfig(timezone=EASTERN)
        self.aggregator = StatisticsAggregator(self.history, config=config, clock=lambda: self.now)

    def test_today_is_the_local_date(self) -> None:
        progress = self.aggregator.get_daily_progress()
        assert progress.date == date(2024, 5, 5)
        assert progress.reviews_completed == 1
        assert progress.cards_studied == 1

    def test_streak_counts_local_days(self) -> None:
        stats = self.aggregator.get_global_statistics()
        assert stats.study_streak == 2
        assert stats.longest_streak == 2
        assert stats.recent_activity[-1].date == date(2024, 5, 5)
        assert stats.recent_activity[-1].reviews == 1
        assert stats.recent_activity[-2].reviews == 2

    def test_weekly_buckets_follow_local_midnight(self) -> None:
        trend = self.aggregator.get_weekly_trend()
        assert trend.week_end == date(2024, 5, 5)
        by_day = {d.date: d.reviews for d in trend.daily_data}
        assert by_day[date(2024, 5, 4)] == 2
        assert by_day[date(2024, 5, 5)] == 1

    def test_goal_check_uses_local_day(self) -> None:
        result = self.aggregator.check_goal_achievement()
        assert result.date == date(2024, 5, 5)
        assert result.streak_goal_achieved
        goals = self.aggregator.get_daily_goals()
        assert goals.cards_completed == 1
        assert goals.current_streak == 2
        assert goals.progress_date == date(2024, 5, 5)

    def test_utc_default_differs(self) -> None:
        utc = StatisticsAggregator(self.history, clock=lambda: self.now)
        progress = utc.get_daily_progress()
        assert progress.date == date(2024, 5, 6)
        assert utc.get_global_statistics().study_streak == 3

    def test_named_zone_from_settings_string(self) -> None:
        aggregator = StatisticsAggregator(self.history, config=StatsConfig(timezone="UTC"), clock=lambda: self.now)
        assert aggregator.get_daily_progress().date == date(2024, 5, 6)


# --- Failure wrapping ---


class BrokenHistory(InMemoryHistory):
    def iter_events(self, *args, **kwargs):
        raise RuntimeError("storage went away")


class TestCalculationFailure:
    def test_unexpected_errors_are_wrapped(self) -> None:
        aggregator = StatisticsAggregator(BrokenHistory(), clock=lambda: NOW)
        with pytest.raises(StatsCalculationFailed) as exc_info:
            aggregator.get_global_statistics()
        assert exc_info.value.operation == "get global statistics"
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert isinstance(exc_info.value.cause, RuntimeError)

    def test_domain_errors_pass_through(self) -> None:
        history = BrokenHistory()
        aggregator = StatisticsAggregator(history, clock=lambda: NOW)
        with pytest.raises(DeckNotFound):
            aggregator.get_deck_statistics(1)
