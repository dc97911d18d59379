"""
Running totals over a stream of review events.

Aggregation never needs the whole history in memory: ``fold_events`` takes
any iterable, so events can come from a list or be paged from storage.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta, tzinfo

from .models import ReviewEvent, TrendDirection

CORRECT_QUALITY = 3  # Good or better
LOW_QUALITY = 2  # Hard or worse


def local_day(moment: datetime, zone: tzinfo = UTC) -> date:
    """Calendar day of a naive-UTC timestamp as seen in ``zone``."""
    return moment.replace(tzinfo=UTC).astimezone(zone).date()


@dataclass
class ReviewTotals:
    """Running sums for a set of review events."""

    reviews: int = 0
    quality_sum: int = 0
    correct: int = 0
    low_quality: int = 0
    response_time: int = 0  # ms
    card_ids: set[int] = field(default_factory=set)
    session_ids: set[str] = field(default_factory=set)
    study_days: set[date] = field(default_factory=set)
    first_review: datetime | None = None
    last_review: datetime | None = None
    zone: tzinfo = field(default=UTC, repr=False, compare=False)

    def add(self, event: ReviewEvent) -> None:
        """Fold one event into the totals."""
        self.reviews += 1
        self.quality_sum += event.quality
        self.response_time += event.response_time
        if event.quality >= CORRECT_QUALITY:
            self.correct += 1
        if event.quality <= LOW_QUALITY:
            self.low_quality += 1
        self.card_ids.add(event.card_id)
        if event.session_id is not None:
            self.session_ids.add(event.session_id)
        self.study_days.add(local_day(event.reviewed_at, self.zone))
        if self.first_review is None or event.reviewed_at < self.first_review:
            self.first_review = event.reviewed_at
        if self.last_review is None or event.reviewed_at > self.last_review:
            self.last_review = event.reviewed_at

    @property
    def average_quality(self) -> float:
        return self.quality_sum / self.reviews if self.reviews else 0.0

    @property
    def average_response_time(self) -> float:
        return self.response_time / self.reviews if self.reviews else 0.0

    @property
    def retention_rate(self) -> float:
        """Fraction of reviews answered Good or Easy."""
        return self.correct / self.reviews if self.reviews else 0.0

    @property
    def low_quality_rate(self) -> float:
        """Fraction of reviews answered Again or Hard."""
        return self.low_quality / self.reviews if self.reviews else 0.0

    @property
    def sessions(self) -> int:
        return len(self.session_ids)

    @property
    def average_session_time(self) -> float:
        return self.response_time / self.sessions if self.sessions else 0.0


def fold_events(
    events: Iterable[ReviewEvent],
    totals: ReviewTotals | None = None,
    zone: tzinfo = UTC,
) -> ReviewTotals:
    """Consume ``events`` into a ReviewTotals (a new one in ``zone`` unless given)."""
    totals = totals or ReviewTotals(zone=zone)
    for event in events:
        totals.add(event)
    return totals


def current_streak(days: Iterable[date], today: date) -> int:
    """Count consecutive study days ending today."""
    day_set = set(days)
    streak = 0
    day = today
    while day in day_set:
        streak += 1
        day -= timedelta(days=1)
    return streak


def longest_streak(days: Iterable[date]) -> int:
    """Length of the longest run of consecutive study days."""
    longest = 0
    run = 0
    previous: date | None = None
    for day in sorted(set(days)):
        if previous is not None and day - previous == timedelta(days=1):
            run += 1
        else:
            run = 1
        longest = max(longest, run)
        previous = day
    return longest


def linear_slope(values: list[float]) -> float:
    """Least-squares slope of ``values`` against their index."""
    n = len(values)
    if n < 2:
        return 0.0
    mean_x = (n - 1) / 2
    mean_y = sum(values) / n
    numerator = sum((x - mean_x) * (y - mean_y) for x, y in enumerate(values))
    denominator = sum((x - mean_x) ** 2 for x in range(n))
    return numerator / denominator


def classify_trend(slope: float, tolerance: float) -> TrendDirection:
    if slope > tolerance:
        return "improving"
    if slope < -tolerance:
        return "declining"
    return "stable"


def fold_daily(
    events: Iterable[ReviewEvent], zone: tzinfo = UTC
) -> tuple[ReviewTotals, dict[date, ReviewTotals]]:
    """Fold events into overall totals plus one ReviewTotals per calendar day in ``zone``."""
    totals = ReviewTotals(zone=zone)
    by_day: dict[date, ReviewTotals] = {}
    for event in events:
        totals.add(event)
        by_day.setdefault(local_day(event.reviewed_at, zone), ReviewTotals(zone=zone)).add(event)
    return totals, by_day
