"""Tests for building and interleaving the study queue."""

from datetime import timedelta

import pytest

from backend.config import utcnow
from backend.models.card import Card
from backend.models.deck import Deck
from backend.srs.queue import QueueConfig, ReviewQueue, build_queue


class TestReviewQueue:
    def test_interleaved_no_new(self) -> None:
        queue = ReviewQueue(due_cards=["a", "b", "c"], new_cards=[], total=3)
        assert queue.interleaved() == ["a", "b", "c"]

    def test_interleaved_no_due(self) -> None:
        queue = ReviewQueue(due_cards=[], new_cards=["x", "y"], total=2)
        assert queue.interleaved() == ["x", "y"]

    def test_interleaved_mixes(self) -> None:
        queue = ReviewQueue(
            due_cards=["a", "b", "c", "d", "e", "f"],
            new_cards=["x", "y"],
            total=8,
        )
        result = queue.interleaved()
        assert len(result) == 8
        assert set(result) == {"a", "b", "c", "d", "e", "f", "x", "y"}
        # Reviews keep their order
        assert [c for c in result if c not in ("x", "y")] == ["a", "b", "c", "d", "e", "f"]
        assert result[:2] == ["a", "b"]


async def _seed(db) -> tuple[Deck, dict[str, Card]]:
    now = utcnow()
    deck = Deck(name="Capitals")
    other = Deck(name="Other")
    db.add_all([deck, other])
    await db.flush()

    cards = {
        "overdue": Card(
            deck_id=deck.id,
            front="France",
            back="Paris",
            repetitions=2,
            interval=6,
            last_review_date=now - timedelta(days=10),
            next_review_date=now - timedelta(days=4),
        ),
        "due": Card(
            deck_id=deck.id,
            front="Spain",
            back="Madrid",
            repetitions=1,
            interval=1,
            last_review_date=now - timedelta(days=2),
            next_review_date=now - timedelta(days=1),
        ),
        "future": Card(
            deck_id=deck.id,
            front="Italy",
            back="Rome",
            repetitions=3,
            interval=15,
            last_review_date=now - timedelta(days=1),
            next_review_date=now + timedelta(days=14),
        ),
        "new1": Card(deck_id=deck.id, front="Peru", back="Lima"),
        "new2": Card(deck_id=deck.id, front="Chile", back="Santiago"),
        "elsewhere": Card(deck_id=other.id, front="Japan", back="Tokyo"),
    }
    db.add_all(cards.values())
    await db.commit()
    return deck, cards


class TestBuildQueue:
    @pytest.mark.asyncio
    async def test_due_cards_most_overdue_first(self, db) -> None:
        deck, cards = await _seed(db)
        queue = await build_queue(db, deck.id)
        assert [c.id for c in queue.due_cards] == [cards["overdue"].id, cards["due"].id]

    @pytest.mark.asyncio
    async def test_new_cards_fifo_within_ratio(self, db) -> None:
        deck, cards = await _seed(db)
        # Two due cards at a 0.25 ratio still leave one slot for a new card
        queue = await build_queue(db, deck.id)
        assert [c.id for c in queue.new_cards] == [cards["new1"].id]
        assert queue.total == 3

    @pytest.mark.asyncio
    async def test_nothing_due_fills_new_slots(self, db) -> None:
        deck, cards = await _seed(db)
        queue = await build_queue(db, deck.id, now=utcnow() - timedelta(days=30))
        assert queue.due_cards == []
        assert [c.id for c in queue.new_cards] == [cards["new1"].id, cards["new2"].id]

    @pytest.mark.asyncio
    async def test_limits(self, db) -> None:
        deck, _ = await _seed(db)
        queue = await build_queue(db, deck.id, config=QueueConfig(max_reviews=1, max_new=0))
        assert len(queue.due_cards) == 1
        assert queue.new_cards == []

    @pytest.mark.asyncio
    async def test_other_decks_excluded(self, db) -> None:
        deck, cards = await _seed(db)
        queue = await build_queue(db, deck.id, config=QueueConfig(max_new=10, new_card_ratio=1.0))
        ids = {c.id for c in queue.interleaved()}
        assert cards["elsewhere"].id not in ids
        assert cards["future"].id not in ids
