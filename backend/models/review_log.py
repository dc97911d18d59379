from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.config import utcnow
from backend.models.base import Base
from backend.stats.models import ReviewEvent


class ReviewLog(Base):
    __tablename__ = "review_logs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    card_id: Mapped[int] = mapped_column(ForeignKey("cards.id"), nullable=False, index=True)
    session_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    quality: Mapped[int] = mapped_column(Integer, nullable=False)  # 1=Again, 2=Hard, 3=Good, 4=Easy
    response_time_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    ease_factor: Mapped[float] = mapped_column(Float, nullable=False)  # after this review
    interval: Mapped[float] = mapped_column(Float, nullable=False)  # days, after this review
    reviewed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)

    card: Mapped["Card"] = relationship(back_populates="review_logs")  # type: ignore[name-defined] # noqa: F821

    @classmethod
    def from_event(cls, event: ReviewEvent) -> "ReviewLog":
        return cls(
            card_id=event.card_id,
            session_id=event.session_id,
            quality=event.quality,
            response_time_ms=event.response_time,
            ease_factor=event.ease_factor,
            interval=event.interval,
            reviewed_at=event.reviewed_at,
        )

    def to_event(self) -> ReviewEvent:
        return ReviewEvent(
            card_id=self.card_id,
            reviewed_at=self.reviewed_at,
            quality=self.quality,
            response_time=self.response_time_ms,
            ease_factor=self.ease_factor,
            interval=self.interval,
            session_id=self.session_id,
        )
