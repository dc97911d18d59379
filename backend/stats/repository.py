"""
Review history sources for the statistics aggregator.

The aggregator depends on the ``HistoryRepository`` abstraction only.
``InMemoryHistory`` is the snapshot implementation; ``load_history`` fills
one from the database so aggregation runs without holding a DB session.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from dataclasses import replace
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.config import settings
from backend.errors import InvalidTimeRange
from backend.models.card import Card
from backend.models.daily_goal import DailyGoal
from backend.models.deck import Deck
from backend.models.review_log import ReviewLog
from backend.srs.sm2 import SchedulingState

from .models import DailyGoals, ReviewEvent

logger = logging.getLogger(__name__)


def check_time_range(start: datetime | None, end: datetime | None) -> None:
    """Reject a window whose start lies after its end."""
    if start is not None and end is not None and start > end:
        raise InvalidTimeRange(
            f"Time range start {start.isoformat()} is after end {end.isoformat()}",
            start=start.isoformat(),
            end=end.isoformat(),
        )


def default_goals() -> DailyGoals:
    return DailyGoals(
        cards_goal=settings.default_cards_goal,
        time_goal=settings.default_time_goal,
        streak_goal=settings.default_streak_goal,
    )


class HistoryRepository(ABC):
    """
    Port for reading review history and per-card scheduling state.

    Implementations:
        - InMemoryHistory: Holds a snapshot in plain Python collections.
    """

    @abstractmethod
    def deck_ids(self) -> list[int]:
        """Return the ids of every known deck."""
        pass

    @abstractmethod
    def has_deck(self, deck_id: int) -> bool:
        pass

    @abstractmethod
    def card_states(self, deck_id: int | None = None) -> list[SchedulingState]:
        """Return current scheduling state for all cards, optionally of one deck."""
        pass

    @abstractmethod
    def card_state(self, card_id: int) -> SchedulingState | None:
        pass

    @abstractmethod
    def iter_events(
        self,
        deck_id: int | None = None,
        card_id: int | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> Iterator[ReviewEvent]:
        """
        Yield review events in chronological order.

        Args:
            deck_id: Only events for cards in this deck.
            card_id: Only events for this card.
            start: Inclusive lower bound on ``reviewed_at``.
            end: Exclusive upper bound on ``reviewed_at``.

        Raises:
            InvalidTimeRange: If start is after end.
        """
        pass

    @abstractmethod
    def get_goals(self) -> DailyGoals:
        pass

    @abstractmethod
    def save_goals(self, goals: DailyGoals) -> None:
        pass


class InMemoryHistory(HistoryRepository):
    """History snapshot held in memory."""

    def __init__(self, goals: DailyGoals | None = None) -> None:
        self._decks: set[int] = set()
        self._card_deck: dict[int, int] = {}
        self._states: dict[int, SchedulingState] = {}
        self._events: list[ReviewEvent] = []
        self._goals = goals or default_goals()

    def add_deck(self, deck_id: int) -> None:
        self._decks.add(deck_id)

    def add_card(self, deck_id: int, state: SchedulingState) -> None:
        self._decks.add(deck_id)
        self._card_deck[state.card_id] = deck_id
        self._states[state.card_id] = state

    def update_card(self, state: SchedulingState) -> None:
        """Replace the scheduling state of a known card."""
        if state.card_id not in self._states:
            raise KeyError(state.card_id)
        self._states[state.card_id] = state

    def add_event(self, event: ReviewEvent) -> None:
        self._events.append(event)

    def add_events(self, events: Iterable[ReviewEvent]) -> None:
        for event in events:
            self.add_event(event)

    def deck_ids(self) -> list[int]:
        return sorted(self._decks)

    def has_deck(self, deck_id: int) -> bool:
        return deck_id in self._decks

    def card_states(self, deck_id: int | None = None) -> list[SchedulingState]:
        return [
            state
            for card_id, state in self._states.items()
            if deck_id is None or self._card_deck[card_id] == deck_id
        ]

    def card_state(self, card_id: int) -> SchedulingState | None:
        return self._states.get(card_id)

    def iter_events(
        self,
        deck_id: int | None = None,
        card_id: int | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> Iterator[ReviewEvent]:
        check_time_range(start, end)
        for event in sorted(self._events, key=lambda e: e.reviewed_at):
            if card_id is not None and event.card_id != card_id:
                continue
            if deck_id is not None and self._card_deck.get(event.card_id) != deck_id:
                continue
            if start is not None and event.reviewed_at < start:
                continue
            if end is not None and event.reviewed_at >= end:
                continue
            yield event

    def get_goals(self) -> DailyGoals:
        return replace(self._goals)

    def save_goals(self, goals: DailyGoals) -> None:
        self._goals = replace(goals)


async def load_history(db: AsyncSession) -> InMemoryHistory:
    """Read decks, cards, review logs and goals into an in-memory snapshot."""
    goal_row = (await db.execute(select(DailyGoal).limit(1))).scalar_one_or_none()
    goals = default_goals()
    if goal_row is not None:
        goals = DailyGoals(
            cards_goal=goal_row.cards_goal,
            time_goal=goal_row.time_goal,
            streak_goal=goal_row.streak_goal,
            cards_completed=goal_row.cards_completed,
            time_completed=goal_row.time_completed,
            current_streak=goal_row.current_streak,
            total_achievements=goal_row.total_achievements,
            progress_date=goal_row.progress_date,
        )
    history = InMemoryHistory(goals=goals)

    for deck_id in (await db.execute(select(Deck.id))).scalars():
        history.add_deck(deck_id)

    for card in (await db.execute(select(Card))).scalars():
        history.add_card(card.deck_id, card.scheduling_state())

    logs = (await db.execute(select(ReviewLog).order_by(ReviewLog.reviewed_at.asc()))).scalars()
    for log in logs:
        if history.card_state(log.card_id) is None:
            logger.warning("Skipping review log %d: card %d no longer exists", log.id, log.card_id)
            continue
        history.add_event(log.to_event())

    logger.debug(
        "Loaded history: %d decks, %d cards",
        len(history.deck_ids()),
        len(history.card_states()),
    )
    return history


async def store_goals(db: AsyncSession, goals: DailyGoals) -> None:
    """Write the goal targets and recorded progress back to the single goals row."""
    row = (await db.execute(select(DailyGoal).limit(1))).scalar_one_or_none()
    if row is None:
        row = DailyGoal()
        db.add(row)
    row.cards_goal = goals.cards_goal
    row.time_goal = goals.time_goal
    row.streak_goal = goals.streak_goal
    row.cards_completed = goals.cards_completed
    row.time_completed = goals.time_completed
    row.current_streak = goals.current_streak
    row.total_achievements = goals.total_achievements
    row.progress_date = goals.progress_date
    await db.commit()
