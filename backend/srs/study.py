"""Study orchestration.

Connects the database to the in-memory session state machine: loads the
card batch when a session starts, and writes the card's new schedule plus a
review log row after every answer.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from backend.errors import CardNotFound, DeckNotFound
from backend.models.card import Card
from backend.models.deck import Deck
from backend.models.review_log import ReviewLog
from backend.srs.queue import QueueConfig, ReviewQueue, build_queue
from backend.srs.session import AnswerResult, SessionManager, StudySessionData

logger = logging.getLogger(__name__)


async def start_study(
    db: AsyncSession,
    manager: SessionManager,
    deck_id: int,
    config: QueueConfig | None = None,
    keyboard_shortcuts: bool = True,
    auto_advance: bool = False,
) -> tuple[StudySessionData, ReviewQueue]:
    """Build the queue for a deck and open a session over it.

    Raises:
        DeckNotFound: If the deck does not exist.
    """
    deck = await db.get(Deck, deck_id)
    if deck is None:
        raise DeckNotFound(deck_id)

    queue = await build_queue(db, deck_id, config=config)
    cards = [card.scheduling_state() for card in queue.interleaved()]
    data = manager.create(
        deck_id,
        cards,
        keyboard_shortcuts=keyboard_shortcuts,
        auto_advance=auto_advance,
    )
    return data, queue


async def submit_answer(
    db: AsyncSession,
    manager: SessionManager,
    session_id: str,
    quality: int,
    response_time: int,
) -> AnswerResult:
    """Record an answer and persist the card's new schedule and review log.

    The card is scheduled from its stored row rather than the copy taken when
    the session started, so two sessions on one deck never overwrite each
    other's reviews. The card row and the log row are committed together; if
    the commit fails the session's answer is undone.

    Raises:
        CardNotFound: If the current card was deleted after the session started.
    """
    pending = manager.current_card(session_id)
    card = None
    stored_state = None
    if pending is not None:
        card = await db.get(Card, pending.card_id, populate_existing=True)
        if card is None:
            raise CardNotFound(pending.card_id)
        stored_state = card.scheduling_state()

    result = manager.record_answer(session_id, quality, response_time, stored_state)
    assert card is not None  # record_answer rejects a session with no current card

    try:
        card.apply_state(result.new_state)
        db.add(ReviewLog.from_event(result.event))
        await db.commit()
    except Exception:
        await db.rollback()
        manager.undo_answer(session_id, result)
        raise

    logger.debug(
        "Card %d rated %d: interval %.4f days, ease %.2f",
        card.id,
        result.event.quality,
        result.new_state.interval,
        result.new_state.ease_factor,
    )
    return result
