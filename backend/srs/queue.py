"""Queue management for study sessions.

Handles card prioritization, mixing new cards with reviews,
and session limits to prevent overwhelm.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.config import settings, utcnow
from backend.models.card import Card

logger = logging.getLogger(__name__)


@dataclass
class QueueConfig:
    """Configuration for queue building."""

    max_reviews: int = settings.max_reviews_per_session
    max_new: int = settings.max_new_cards_per_session
    new_card_ratio: float = settings.new_card_ratio  # 1 new card per 4 reviews


@dataclass
class ReviewQueue:
    """A prepared queue of cards for a study session."""

    due_cards: list[Card] = field(default_factory=list)
    new_cards: list[Card] = field(default_factory=list)
    total: int = 0

    def interleaved(self) -> list[Card]:
        """Return cards interleaved: mostly reviews with new cards mixed in.

        A new card goes in after every N reviews, with leftovers at the end.
        """
        if not self.new_cards:
            return list(self.due_cards)
        if not self.due_cards:
            return list(self.new_cards)

        result: list[Card] = []
        new = list(self.new_cards)

        interval = max(1, len(self.due_cards) // (len(new) + 1))
        new_idx = 0

        for i, card in enumerate(self.due_cards):
            result.append(card)
            if new_idx < len(new) and (i + 1) % interval == 0:
                result.append(new[new_idx])
                new_idx += 1

        result.extend(new[new_idx:])
        return result


async def build_queue(
    session: AsyncSession,
    deck_id: int,
    config: QueueConfig | None = None,
    now: datetime | None = None,
) -> ReviewQueue:
    """Build the card batch for one deck.

    Due cards (reviewed before and past their next review date) come most
    overdue first. When there are due cards, new cards fill
    ``new_card_ratio`` of them, never fewer than one and never more than
    ``max_new``; a deck with nothing due gets a full ``max_new`` batch.

    Args:
        session: Database session.
        deck_id: The deck to study.
        config: Queue configuration (limits, ratios).
        now: Current time (defaults to utcnow).

    Returns:
        A ReviewQueue with due and new cards.
    """
    config = config or QueueConfig()
    now = now or utcnow()

    due_stmt = (
        select(Card)
        .where(
            and_(
                Card.deck_id == deck_id,
                Card.last_review_date.is_not(None),
                Card.next_review_date <= now,
            )
        )
        .order_by(Card.next_review_date.asc())
        .limit(config.max_reviews)
    )
    due_cards = list((await session.execute(due_stmt)).scalars().all())

    if due_cards:
        new_card_slots = min(config.max_new, max(1, int(len(due_cards) * config.new_card_ratio)))
    else:
        new_card_slots = config.max_new

    new_stmt = (
        select(Card)
        .where(and_(Card.deck_id == deck_id, Card.last_review_date.is_(None)))
        .order_by(Card.id.asc())  # Oldest first (FIFO)
        .limit(new_card_slots)
    )
    new_cards = list((await session.execute(new_stmt)).scalars().all())

    queue = ReviewQueue(
        due_cards=due_cards,
        new_cards=new_cards,
        total=len(due_cards) + len(new_cards),
    )

    logger.info(
        "Built queue for deck %d: %d due + %d new = %d total",
        deck_id,
        len(due_cards),
        len(new_cards),
        queue.total,
    )
    return queue
