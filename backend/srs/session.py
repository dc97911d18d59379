"""Study session state machine.

A session walks one user through a batch of cards. Every answer runs the
SM-2 scheduler for the current card and produces a review event; the caller
persists both. Status changes go through a single transition table so illegal
moves fail the same way everywhere.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum

from backend.config import utcnow
from backend.errors import (
    InvalidResponseTime,
    InvalidSessionState,
    SessionNotFound,
)
from backend.srs import sm2
from backend.srs.sm2 import Quality, SchedulingState
from backend.stats.models import ReviewEvent

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        """Completed and abandoned sessions never change again."""
        return self in (SessionStatus.COMPLETED, SessionStatus.ABANDONED)


class SessionEvent(str, Enum):
    ANSWER = "answer"
    FINISH = "finish"
    PAUSE = "pause"
    RESUME = "resume"
    ABANDON = "abandon"


TRANSITIONS: dict[tuple[SessionStatus, SessionEvent], SessionStatus] = {
    (SessionStatus.ACTIVE, SessionEvent.ANSWER): SessionStatus.ACTIVE,
    (SessionStatus.ACTIVE, SessionEvent.FINISH): SessionStatus.COMPLETED,
    (SessionStatus.ACTIVE, SessionEvent.PAUSE): SessionStatus.PAUSED,
    (SessionStatus.ACTIVE, SessionEvent.ABANDON): SessionStatus.ABANDONED,
    (SessionStatus.PAUSED, SessionEvent.RESUME): SessionStatus.ACTIVE,
    (SessionStatus.PAUSED, SessionEvent.ABANDON): SessionStatus.ABANDONED,
}


def transition(session_id: str, status: SessionStatus, event: SessionEvent) -> SessionStatus:
    """Return the status reached by applying ``event``.

    Raises:
        InvalidSessionState: If the table has no entry for (status, event).
    """
    try:
        return TRANSITIONS[(status, event)]
    except KeyError:
        raise InvalidSessionState(session_id, status.value, event.value) from None


def _elapsed_ms(start: datetime, end: datetime) -> int:
    return max(0, int((end - start).total_seconds() * 1000))


@dataclass
class StudySessionData:
    """Progress counters and timing for one study run."""

    id: str
    deck_id: int
    start_time: datetime
    status: SessionStatus = SessionStatus.ACTIVE
    end_time: datetime | None = None
    total_cards: int = 0
    completed_cards: int = 0
    current_card_index: int = 0
    correct_answers: int = 0
    total_response_time: int = 0  # ms
    quality_scores: list[int] = field(default_factory=list)
    paused_time: int = 0  # ms
    paused_at: datetime | None = None
    keyboard_shortcuts: bool = True
    auto_advance: bool = False

    @property
    def accuracy(self) -> float:
        """Fraction of answers rated Good or Easy."""
        return self.correct_answers / self.completed_cards if self.completed_cards else 0.0

    @property
    def average_response_time(self) -> float:
        """Mean response time in milliseconds."""
        return self.total_response_time / self.completed_cards if self.completed_cards else 0.0

    @property
    def remaining_cards(self) -> int:
        return max(0, self.total_cards - self.completed_cards)

    @property
    def progress(self) -> float:
        """Percentage of the batch answered so far."""
        return self.completed_cards / self.total_cards * 100 if self.total_cards else 0.0

    def elapsed_time(self, now: datetime) -> int:
        """Milliseconds spent studying, excluding paused spans."""
        end = self.end_time or now
        paused = self.paused_time
        if self.paused_at is not None:
            paused += _elapsed_ms(self.paused_at, end)
        return max(0, _elapsed_ms(self.start_time, end) - paused)


@dataclass(frozen=True)
class AnswerResult:
    """Everything the caller needs to persist after one answer."""

    previous_state: SchedulingState
    new_state: SchedulingState
    event: ReviewEvent
    session: StudySessionData


class StudySession:
    """One active study run over a fixed batch of cards."""

    def __init__(
        self,
        data: StudySessionData,
        cards: Sequence[SchedulingState],
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the session with its counters, card batch and clock."""
        self._data = data
        self._cards = list(cards)
        self._clock = clock
        self._lock = threading.Lock()
        self._undo: tuple[AnswerResult, StudySessionData, SchedulingState] | None = None

    @property
    def id(self) -> str:
        return self._data.id

    @property
    def status(self) -> SessionStatus:
        return self._data.status

    @property
    def current_card(self) -> SchedulingState | None:
        """Return the card awaiting an answer, or None once the batch is exhausted."""
        index = self._data.current_card_index
        if index < len(self._cards):
            return self._cards[index]
        return None

    def snapshot(self) -> StudySessionData:
        """Return a copy of the session data that later answers won't mutate."""
        with self._lock:
            return self._copy()

    def record_answer(
        self,
        quality: int,
        response_time: int,
        stored_state: SchedulingState | None = None,
    ) -> AnswerResult:
        """Record an answer for the current card and schedule it.

        Args:
            quality: Rating 1-4 (Again/Hard/Good/Easy).
            response_time: Time to answer in milliseconds.
            stored_state: The card's state as currently persisted. When given
                it replaces the copy taken at session start, so answers from
                other sessions on the same card are not overwritten.

        Returns:
            AnswerResult with the card's old and new scheduling state, the
            review event to append, and a snapshot of the session.

        Raises:
            InvalidQuality: Quality outside 1-4.
            InvalidResponseTime: Response time not positive.
            InvalidSessionState: Session is not active, or ``stored_state``
                belongs to a card other than the current one.
        """
        q = Quality.parse(quality)
        if isinstance(response_time, bool) or not isinstance(response_time, int | float) or response_time <= 0:
            raise InvalidResponseTime(response_time)

        with self._lock:
            data = self._data
            transition(data.id, data.status, SessionEvent.ANSWER)
            card = self.current_card
            if card is None:
                raise InvalidSessionState(data.id, data.status.value, "answer past the end of")
            if stored_state is not None:
                if stored_state.card_id != card.card_id:
                    raise InvalidSessionState(data.id, data.status.value, f"answer card {stored_state.card_id} in")
                card = stored_state

            before = self._copy()
            previous_entry = self._cards[data.current_card_index]
            now = self._clock()
            new_state = sm2.schedule(card, q, now)
            self._cards[data.current_card_index] = new_state

            data.completed_cards += 1
            data.current_card_index += 1
            data.quality_scores.append(int(q))
            data.total_response_time += int(response_time)
            if q.is_correct:
                data.correct_answers += 1

            event = ReviewEvent(
                card_id=card.card_id,
                reviewed_at=now,
                quality=int(q),
                response_time=int(response_time),
                ease_factor=new_state.ease_factor,
                interval=new_state.interval,
                session_id=data.id,
            )

            if data.completed_cards >= data.total_cards:
                data.status = transition(data.id, data.status, SessionEvent.FINISH)
                data.end_time = now
                logger.info(
                    "Session %s completed: %d cards, %.0f%% correct",
                    data.id,
                    data.completed_cards,
                    data.accuracy * 100,
                )

            result = AnswerResult(
                previous_state=card,
                new_state=new_state,
                event=event,
                session=self._copy(),
            )
            self._undo = (result, before, previous_entry)
            return result

    def undo_answer(self, result: AnswerResult) -> StudySessionData:
        """Take back the most recent answer, e.g. when persisting it failed.

        Counters, the card cursor and a completed status all return to what
        they were before the answer.

        Raises:
            InvalidSessionState: If ``result`` is not the latest answer.
        """
        with self._lock:
            if self._undo is None or self._undo[0] is not result:
                raise InvalidSessionState(self._data.id, self._data.status.value, "undo a stale answer in")
            _, before, previous_entry = self._undo
            self._undo = None
            self._data = before
            self._cards[before.current_card_index] = previous_entry
            logger.warning("Session %s: answer for card %d rolled back", before.id, result.event.card_id)
            return self._copy()

    def pause(self) -> StudySessionData:
        """Pause the session; time until ``resume`` is excluded from study time."""
        with self._lock:
            data = self._data
            data.status = transition(data.id, data.status, SessionEvent.PAUSE)
            self._undo = None
            data.paused_at = self._clock()
            return self._copy()

    def resume(self) -> StudySessionData:
        """Resume a paused session and add the paused span to ``paused_time``."""
        with self._lock:
            data = self._data
            data.status = transition(data.id, data.status, SessionEvent.RESUME)
            self._undo = None
            self._close_pause(self._clock())
            return self._copy()

    def abandon(self) -> StudySessionData:
        """Stop the session early. Unanswered cards keep their old schedule."""
        with self._lock:
            data = self._data
            data.status = transition(data.id, data.status, SessionEvent.ABANDON)
            self._undo = None
            now = self._clock()
            self._close_pause(now)
            data.end_time = now
            logger.info(
                "Session %s abandoned after %d of %d cards",
                data.id,
                data.completed_cards,
                data.total_cards,
            )
            return self._copy()

    def _close_pause(self, now: datetime) -> None:
        data = self._data
        if data.paused_at is not None:
            data.paused_time += _elapsed_ms(data.paused_at, now)
            data.paused_at = None

    def _copy(self) -> StudySessionData:
        return replace(self._data, quality_scores=list(self._data.quality_scores))


class SessionManager:
    """Registry of study sessions keyed by id.

    Holds at most one StudySession per id; each session serializes its own
    writes, and the registry lock guards creation and lookup.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        """Initialize an empty registry with an injectable clock and id source."""
        self._clock = clock
        self._id_factory = id_factory
        self._sessions: dict[str, StudySession] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def create(
        self,
        deck_id: int,
        cards: Sequence[SchedulingState],
        keyboard_shortcuts: bool = True,
        auto_advance: bool = False,
    ) -> StudySessionData:
        """Start a new active session over ``cards``.

        Args:
            deck_id: The deck being studied.
            cards: Scheduling state of each card, in presentation order.
            keyboard_shortcuts: UI option, stored as-is.
            auto_advance: UI option, stored as-is.

        Returns:
            A snapshot of the new session.
        """
        data = StudySessionData(
            id=self._id_factory(),
            deck_id=deck_id,
            start_time=self._clock(),
            total_cards=len(cards),
            keyboard_shortcuts=keyboard_shortcuts,
            auto_advance=auto_advance,
        )
        session = StudySession(data, cards, clock=self._clock)
        with self._lock:
            self._sessions[data.id] = session

        logger.info("Created session %s for deck %d: %d cards", data.id, deck_id, len(cards))
        return session.snapshot()

    def get(self, session_id: str) -> StudySession:
        """Return the live session object.

        Raises:
            SessionNotFound: If no session has that id.
        """
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def get_state(self, session_id: str) -> StudySessionData:
        return self.get(session_id).snapshot()

    def current_card(self, session_id: str) -> SchedulingState | None:
        return self.get(session_id).current_card

    def record_answer(
        self,
        session_id: str,
        quality: int,
        response_time: int,
        stored_state: SchedulingState | None = None,
    ) -> AnswerResult:
        return self.get(session_id).record_answer(quality, response_time, stored_state)

    def undo_answer(self, session_id: str, result: AnswerResult) -> StudySessionData:
        return self.get(session_id).undo_answer(result)

    def pause(self, session_id: str) -> StudySessionData:
        return self.get(session_id).pause()

    def resume(self, session_id: str) -> StudySessionData:
        return self.get(session_id).resume()

    def abandon(self, session_id: str) -> StudySessionData:
        return self.get(session_id).abandon()

    def discard(self, session_id: str) -> StudySessionData:
        """Drop a session from the registry and return its final snapshot."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFound(session_id)
        return session.snapshot()

    def active_sessions(self) -> list[StudySessionData]:
        """Snapshots of every session that is not yet terminal."""
        with self._lock:
            sessions = list(self._sessions.values())
        return [s.snapshot() for s in sessions if not s.status.is_terminal]
