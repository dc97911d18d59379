"""Flashcard model carrying its SM-2 scheduling state."""

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.models.base import Base, TimestampMixin
from backend.srs.sm2 import DEFAULT_EASE_FACTOR, SchedulingState


class Card(Base, TimestampMixin):
    """A front/back flashcard with SM-2 scheduling state."""

    __tablename__ = "cards"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    deck_id: Mapped[int] = mapped_column(ForeignKey("decks.id"), nullable=False)
    front: Mapped[str] = mapped_column(Text, nullable=False)
    back: Mapped[str] = mapped_column(Text, nullable=False)
    ease_factor: Mapped[float] = mapped_column(Float, nullable=False, default=DEFAULT_EASE_FACTOR)
    interval: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)  # days
    repetitions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_review_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    next_review_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    deck: Mapped["Deck"] = relationship(back_populates="cards")  # type: ignore[name-defined] # noqa: F821
    review_logs: Mapped[list["ReviewLog"]] = relationship(back_populates="card", cascade="all, delete-orphan")  # type: ignore[name-defined] # noqa: F821

    def scheduling_state(self) -> SchedulingState:
        """Extract the SM-2 state of this card."""
        return SchedulingState(
            card_id=self.id,
            ease_factor=self.ease_factor,
            interval=self.interval,
            repetitions=self.repetitions,
            last_review_date=self.last_review_date,
            next_review_date=self.next_review_date,
        )

    def apply_state(self, state: SchedulingState) -> None:
        """Copy a new SM-2 state onto this card."""
        self.ease_factor = state.ease_factor
        self.interval = state.interval
        self.repetitions = state.repetitions
        self.last_review_date = state.last_review_date
        self.next_review_date = state.next_review_date
