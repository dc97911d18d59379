"""Error types raised by the scheduling, session and statistics layers.

Every error carries a stable ``code`` so the API layer can map it to an
HTTP status without string matching on messages.
"""

from typing import Any


class FlashcardError(Exception):
    """Base class for all domain errors."""

    code = "FLASHCARD_ERROR"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for API responses and logs."""
        return {"code": self.code, "message": self.message, "details": self.details}


class InvalidQuality(FlashcardError):
    code = "STUDY_QUALITY_INVALID"

    def __init__(self, quality: Any) -> None:
        super().__init__(f"Quality must be an integer between 1 and 4, got {quality!r}", quality=quality)


class InvalidResponseTime(FlashcardError):
    code = "STUDY_RESPONSE_TIME_INVALID"

    def __init__(self, response_time: Any) -> None:
        super().__init__(
            f"Response time must be a positive number of milliseconds, got {response_time!r}",
            response_time=response_time,
        )


class InvalidSessionState(FlashcardError):
    code = "SESSION_STATE_INVALID"

    def __init__(self, session_id: str, status: str, action: str) -> None:
        super().__init__(
            f"Cannot {action} session {session_id} while it is {status}",
            session_id=session_id,
            status=status,
            action=action,
        )


class SessionNotFound(FlashcardError):
    code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} not found", session_id=session_id)


class DeckNotFound(FlashcardError):
    code = "DECK_NOT_FOUND"

    def __init__(self, deck_id: int) -> None:
        super().__init__(f"Deck with id {deck_id} not found", deck_id=deck_id)


class CardNotFound(FlashcardError):
    code = "CARD_NOT_FOUND"

    def __init__(self, card_id: int) -> None:
        super().__init__(f"Card with id {card_id} not found", card_id=card_id)


class InvalidTimeRange(FlashcardError):
    code = "TIME_RANGE_INVALID"


class GoalValueInvalid(FlashcardError):
    code = "GOAL_VALUE_INVALID"

    def __init__(self, kind: str, value: Any, constraint: str) -> None:
        super().__init__(f"Invalid {kind} goal {value!r}: {constraint}", kind=kind, value=value)


class StatsCalculationFailed(FlashcardError):
    """Wraps an unexpected failure while aggregating; the cause is chained."""

    code = "STATS_CALCULATION_FAILED"

    def __init__(self, operation: str, cause: BaseException) -> None:
        super().__init__(f"Statistics operation '{operation}' failed: {cause}", operation=operation)
        self.operation = operation
        self.cause = cause
