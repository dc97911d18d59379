"""SM-2 (SuperMemo 2) spaced repetition scheduler.

Reference: https://www.supermemo.com/en/archives1990-2015/english/ol/sm2

Key concepts:
- Ease factor (EF): Multiplier controlling how fast the interval grows. Never below 1.3.
- Interval: Days until the card is due again (fractional for relearning).
- Repetitions: Consecutive successful reviews since the last lapse.
- Quality: 1=Again, 2=Hard, 3=Good, 4=Easy
"""

import math
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import IntEnum

from backend.errors import InvalidQuality

DEFAULT_EASE_FACTOR = 2.5
MIN_EASE_FACTOR = 1.3

FIRST_INTERVAL = 1  # days, after the first successful review
SECOND_INTERVAL = 6  # days, after the second
MIN_INTERVAL = 1  # days, floor for every non-relearning interval
AGAIN_INTERVAL_MINUTES = 1
MINUTES_PER_DAY = 1440

HARD_MULTIPLIER = 1.2
EASY_MULTIPLIER = 1.3
EASY_BONUS = 0.15  # added on top of the formula for Easy answers

# Coefficients of EF' = EF + (0.1 - (5 - q) * (0.08 + (5 - q) * 0.02))
EF_BASE_INCREMENT = 0.1
EF_FIRST_COEFFICIENT = 0.08
EF_SECOND_COEFFICIENT = 0.02
QUALITY_REFERENCE = 5


class Quality(IntEnum):
    """Self-assessed recall quality for one answer."""

    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4

    @classmethod
    def parse(cls, value: object) -> "Quality":
        """Coerce a raw rating into a Quality, raising InvalidQuality if out of range."""
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidQuality(value)
        try:
            return cls(value)
        except ValueError:
            raise InvalidQuality(value) from None

    @property
    def is_correct(self) -> bool:
        """Good and Easy count as correct for accuracy and retention."""
        return self >= Quality.GOOD


@dataclass(frozen=True)
class SchedulingState:
    """The SM-2 state of a card."""

    card_id: int
    ease_factor: float = DEFAULT_EASE_FACTOR
    interval: float = 0.0  # days
    repetitions: int = 0
    last_review_date: datetime | None = None
    next_review_date: datetime | None = None

    @property
    def is_new(self) -> bool:
        """Return True if the card has never been reviewed."""
        return self.last_review_date is None

    def is_due(self, now: datetime) -> bool:
        """Return True if the card should be shown at ``now``."""
        return self.next_review_date is None or self.next_review_date <= now


def initial_state(card_id: int) -> SchedulingState:
    """Create the scheduling state for a card that has never been reviewed."""
    return SchedulingState(card_id=card_id)


def is_valid_ease_factor(ease_factor: object) -> bool:
    """Return True if the value is a finite ease factor at or above the floor."""
    if isinstance(ease_factor, bool) or not isinstance(ease_factor, int | float):
        return False
    return math.isfinite(ease_factor) and ease_factor >= MIN_EASE_FACTOR


def calculate_ease_factor(ease_factor: float, quality: int) -> float:
    """Apply the SM-2 ease factor update for one answer.

    EF' = EF + (0.1 - (5 - q) * (0.08 + (5 - q) * 0.02)), floored at 1.3.
    Easy leaves EF unchanged, every lower quality decreases it.
    """
    q = Quality.parse(quality)
    quality_diff = QUALITY_REFERENCE - q
    adjustment = EF_BASE_INCREMENT - quality_diff * (
        EF_FIRST_COEFFICIENT + quality_diff * EF_SECOND_COEFFICIENT
    )
    return max(ease_factor + adjustment, MIN_EASE_FACTOR)


def calculate_interval(
    repetitions: int,
    ease_factor: float,
    previous_interval: float | None = None,
) -> int:
    """Return the staged SM-2 interval in whole days.

    Args:
        repetitions: Consecutive successful reviews.
        ease_factor: Ease factor used as the growth multiplier.
        previous_interval: Prior interval, required once repetitions >= 2.

    Returns:
        1 for the first stage, 6 for the second, otherwise the previous
        interval scaled by the ease factor. Never less than 1.
    """
    if repetitions == 0:
        interval = FIRST_INTERVAL
    elif repetitions == 1:
        interval = SECOND_INTERVAL
    else:
        if previous_interval is None:
            raise ValueError("previous_interval is required for repetitions >= 2")
        interval = round(previous_interval * ease_factor)
    return max(int(interval), MIN_INTERVAL)


def _again(state: SchedulingState, ease_factor: float) -> SchedulingState:
    # Lapse: relearn in a minute and start counting successes from zero
    return replace(
        state,
        ease_factor=ease_factor,
        interval=AGAIN_INTERVAL_MINUTES / MINUTES_PER_DAY,
        repetitions=0,
    )


def _hard(state: SchedulingState, ease_factor: float) -> SchedulingState:
    return replace(
        state,
        ease_factor=ease_factor,
        interval=max(state.interval * HARD_MULTIPLIER, MIN_INTERVAL),
    )


def _good(state: SchedulingState, ease_factor: float) -> SchedulingState:
    repetitions = state.repetitions + 1
    if repetitions == 1:
        interval = FIRST_INTERVAL
    else:
        # Growth uses the ease factor the card had going into this review
        interval = calculate_interval(repetitions, state.ease_factor, state.interval)
    return replace(
        state,
        ease_factor=ease_factor,
        interval=float(interval),
        repetitions=repetitions,
    )


def _easy(state: SchedulingState, ease_factor: float) -> SchedulingState:
    return replace(
        state,
        ease_factor=ease_factor + EASY_BONUS,
        interval=max(state.interval * EASY_MULTIPLIER, MIN_INTERVAL),
        repetitions=state.repetitions + 1,
    )


_HANDLERS: dict[Quality, Callable[[SchedulingState, float], SchedulingState]] = {
    Quality.AGAIN: _again,
    Quality.HARD: _hard,
    Quality.GOOD: _good,
    Quality.EASY: _easy,
}


def calculate_next_review(current: SchedulingState, quality: int) -> SchedulingState:
    """Compute the next ease factor, interval and repetitions for a card.

    Review dates are left untouched; use ``schedule`` to stamp them.

    Raises:
        InvalidQuality: If quality is not one of 1-4.
    """
    q = Quality.parse(quality)
    ease_factor = calculate_ease_factor(current.ease_factor, q)
    return _HANDLERS[q](current, ease_factor)


def schedule(current: SchedulingState, quality: int, reviewed_at: datetime) -> SchedulingState:
    """Apply a review at ``reviewed_at`` and set the last/next review dates."""
    new_state = calculate_next_review(current, quality)
    return replace(
        new_state,
        last_review_date=reviewed_at,
        next_review_date=reviewed_at + timedelta(days=new_state.interval),
    )
