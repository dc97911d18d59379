"""CLI interface for the flashcard app.

Usage:
    python -m flashcards add "deck" "front" "back"   Add a card to a deck
    python -m flashcards review "deck"               Start a study session
    python -m flashcards stats [--deck "deck"]       Show your statistics
    python -m flashcards due                         Show how many cards are due
    python -m flashcards goal [kind value]           Show or set a daily goal
"""

import argparse
import asyncio
import logging
import sys
import time

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.config import utcnow
from backend.database import async_session, engine, init_db
from backend.errors import FlashcardError, InvalidQuality
from backend.models.card import Card
from backend.models.deck import Deck
from backend.srs.session import SessionManager, SessionStatus
from backend.srs.study import start_study, submit_answer
from backend.stats.aggregator import StatisticsAggregator
from backend.stats.repository import load_history, store_goals

logger = logging.getLogger(__name__)

RATINGS = "1=Again  2=Hard  3=Good  4=Easy"


async def find_deck(db: AsyncSession, name: str) -> Deck | None:
    return (await db.execute(select(Deck).where(Deck.name == name))).scalar_one_or_none()


def _minutes(ms: int | float) -> str:
    return f"{ms / 60_000:.1f} min"


async def cmd_add(args: argparse.Namespace) -> None:
    """Add a card, creating the deck on first use."""
    async with async_session() as db:
        deck = await find_deck(db, args.deck)
        if deck is None:
            deck = Deck(name=args.deck)
            db.add(deck)
            await db.flush()
            print(f"  Created deck '{args.deck}'")

        card = Card(deck_id=deck.id, front=args.front, back=args.back)
        db.add(card)
        await db.commit()
        print(f"  Added card {card.id} to '{deck.name}' (ready for study)")


async def cmd_review(args: argparse.Namespace) -> None:
    """Run an interactive study session."""
    manager = SessionManager()

    async with async_session() as db:
        deck = await find_deck(db, args.deck)
        if deck is None:
            print(f"  No deck named '{args.deck}'.")
            return

        data, queue = await start_study(db, manager, deck.id)
        if data.total_cards == 0:
            print("\n  No cards due for review. You're all caught up!")
            manager.discard(data.id)
            return

        fronts = {card.id: card for card in queue.due_cards + queue.new_cards}

        print(f"\n  Study Session: {deck.name}")
        print(f"  {len(queue.due_cards)} due + {len(queue.new_cards)} new = {data.total_cards} cards\n")
        print(f"  Ratings: {RATINGS}")
        print("  Type 'q' to quit\n")

        while (state := manager.current_card(data.id)) is not None:
            card = fronts[state.card_id]
            label = f"  [{manager.get_state(data.id).completed_cards + 1}/{data.total_cards}]"
            if state.is_new:
                label += " (NEW)"
            print(label)
            print(f"  {card.front}")

            start = time.monotonic()
            reply = input("\n  Press enter to show the answer: ").strip()
            response_time = max(1, int((time.monotonic() - start) * 1000))
            if reply.lower() == "q":
                manager.abandon(data.id)
                print("\n  Session ended early.")
                break

            print(f"  {card.back}")
            rating = input("  Rate [1-4]: ").strip()
            if rating.lower() == "q":
                manager.abandon(data.id)
                print("\n  Session ended early.")
                break

            try:
                result = await submit_answer(db, manager, data.id, int(rating), response_time)
            except (ValueError, InvalidQuality):
                print(f"  Please enter a rating ({RATINGS})\n")
                continue
            print(f"  Next review in {result.new_state.interval:g} days\n")

    final = manager.discard(data.id)
    if final.status is SessionStatus.COMPLETED:
        print("\n  Session Complete!")
    print(
        f"  Reviewed: {final.completed_cards}  Correct: {final.correct_answers}  "
        f"Accuracy: {final.accuracy * 100:.0f}%\n"
    )


async def cmd_stats(args: argparse.Namespace) -> None:
    """Show global or per-deck statistics."""
    async with async_session() as db:
        deck = None
        if args.deck:
            deck = await find_deck(db, args.deck)
            if deck is None:
                print(f"  No deck named '{args.deck}'.")
                return
        aggregator = StatisticsAggregator(await load_history(db))

    if deck is not None:
        stats = aggregator.get_deck_statistics(deck.id)
        print(f"\n  Deck: {deck.name}")
        rows = [("Total cards:", stats.total_cards)]
    else:
        stats = aggregator.get_global_statistics()
        print("\n  Flashcard Statistics")
        rows = [
            ("Decks:", stats.total_decks),
            ("Total cards:", stats.total_cards),
            ("Study streak:", f"{stats.study_streak} days (best {stats.longest_streak})"),
        ]

    rows += [
        ("New:", stats.new_cards),
        ("Learning:", stats.learning_cards),
        ("Review:", stats.review_cards),
        ("Completed:", stats.completed_cards),
        ("Total reviews:", stats.total_reviews),
        ("Study time:", _minutes(stats.total_study_time)),
        ("Average quality:", f"{stats.average_quality:.2f}"),
        ("Retention:", f"{stats.retention_rate:.0%}"),
        ("Mastery:", f"{stats.mastery_level:.0%}"),
    ]
    for label, value in rows:
        print(f"  {label:<20} {value}")
    print()


async def cmd_due(args: argparse.Namespace) -> None:
    """Show how many cards are due."""
    now = utcnow()

    async with async_session() as db:
        due = (
            await db.execute(
                select(func.count(Card.id)).where(
                    and_(Card.last_review_date.is_not(None), Card.next_review_date <= now)
                )
            )
        ).scalar() or 0

        new = (
            await db.execute(select(func.count(Card.id)).where(Card.last_review_date.is_(None)))
        ).scalar() or 0

    print(f"  {due} cards due, {new} new cards available")


async def cmd_goal(args: argparse.Namespace) -> None:
    """Show today's goal progress, or set one goal."""
    async with async_session() as db:
        aggregator = StatisticsAggregator(await load_history(db))
        if args.kind is not None:
            goals = aggregator.set_daily_goal(args.kind, args.value)
            await store_goals(db, goals)
            print(f"  {args.kind.capitalize()} goal set to {args.value}")

        achievement = aggregator.check_goal_achievement()
        goals = aggregator.get_daily_goals()
        await store_goals(db, goals)

    print("\n  Daily Goals")
    print(f"  {'Cards:':<20} {goals.cards_completed}/{goals.cards_goal}")
    print(f"  {'Time:':<20} {goals.time_completed:.0f}/{goals.time_goal} min")
    print(f"  {'Streak:':<20} {goals.current_streak}/{goals.streak_goal} days")
    print(f"  {'Progress:':<20} {achievement.overall_progress:.0f}%")
    for message in achievement.achievements:
        print(f"  * {message}")
    if achievement.next_milestone is not None:
        m = achievement.next_milestone
        print(f"  Next: {m.remaining} more {'cards' if m.kind == 'cards' else 'minutes'}")
    print()


async def run(command, args: argparse.Namespace) -> None:
    await init_db()
    try:
        await command(args)
    finally:
        await engine.dispose()


def main() -> None:
    """Entry point for the flashcards CLI application."""
    parser = argparse.ArgumentParser(
        prog="flashcards",
        description="Spaced repetition flashcards",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # add
    add_parser = subparsers.add_parser("add", help="Add a card to a deck")
    add_parser.add_argument("deck", help="Deck name (created if missing)")
    add_parser.add_argument("front", help="Question side")
    add_parser.add_argument("back", help="Answer side")

    # review
    review_parser = subparsers.add_parser("review", help="Start a study session")
    review_parser.add_argument("deck", help="Deck name")

    # stats
    stats_parser = subparsers.add_parser("stats", help="Show your statistics")
    stats_parser.add_argument("--deck", help="Only this deck")

    # due
    subparsers.add_parser("due", help="Show cards due for review")

    # goal
    goal_parser = subparsers.add_parser("goal", help="Show or set daily goals")
    goal_parser.add_argument("kind", nargs="?", choices=["cards", "time", "streak"])
    goal_parser.add_argument("value", nargs="?", type=int)

    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)

    if not args.command:
        parser.print_help()
        return

    if args.command == "goal" and (args.kind is None) != (args.value is None):
        parser.error("goal needs both a kind and a value")

    cmd_map = {
        "add": cmd_add,
        "review": cmd_review,
        "stats": cmd_stats,
        "due": cmd_due,
        "goal": cmd_goal,
    }

    try:
        asyncio.run(run(cmd_map[args.command], args))
    except FlashcardError as exc:
        print(f"  Error: {exc.message}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
