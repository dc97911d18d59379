"""API routes for study sessions."""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.schemas import (
    AnswerRequest,
    AnswerResponse,
    CardStateResponse,
    SessionDetailResponse,
    SessionStartRequest,
    SessionStartResponse,
    SessionStateResponse,
)
from backend.database import get_session
from backend.srs.session import SessionManager, StudySessionData
from backend.srs.study import start_study, submit_answer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/session", tags=["session"])


def get_manager(request: Request) -> SessionManager:
    """Return the app-wide session registry."""
    return request.app.state.session_manager


def _detail(manager: SessionManager, data: StudySessionData) -> SessionDetailResponse:
    card = manager.current_card(data.id)
    return SessionDetailResponse(
        session=SessionStateResponse.model_validate(data),
        current_card=CardStateResponse.model_validate(card) if card is not None else None,
    )


@router.post("/start", response_model=SessionStartResponse)
async def session_start(
    request: SessionStartRequest,
    db: AsyncSession = Depends(get_session),
    manager: SessionManager = Depends(get_manager),
) -> SessionStartResponse:
    """Start a new study session over the deck's due and new cards."""
    data, queue = await start_study(
        db,
        manager,
        request.deck_id,
        keyboard_shortcuts=request.keyboard_shortcuts,
        auto_advance=request.auto_advance,
    )
    detail = _detail(manager, data)
    return SessionStartResponse(
        session=detail.session,
        due_cards=len(queue.due_cards),
        new_cards=len(queue.new_cards),
        current_card=detail.current_card,
    )


@router.get("/{session_id}", response_model=SessionDetailResponse)
async def session_state(
    session_id: str,
    manager: SessionManager = Depends(get_manager),
) -> SessionDetailResponse:
    """Get the session's progress and the card awaiting an answer."""
    return _detail(manager, manager.get_state(session_id))


def _release_if_finished(manager: SessionManager, data: StudySessionData) -> None:
    """Drop a completed or abandoned session from the registry."""
    if data.status.is_terminal:
        manager.discard(data.id)
        logger.debug("Released session %s (%s)", data.id, data.status.value)


@router.post("/{session_id}/answer", response_model=AnswerResponse)
async def session_answer(
    session_id: str,
    request: AnswerRequest,
    db: AsyncSession = Depends(get_session),
    manager: SessionManager = Depends(get_manager),
) -> AnswerResponse:
    """Submit a quality rating for the current card.

    The answer that completes the session also releases it; its final state
    is returned here and later lookups get 404.
    """
    result = await submit_answer(db, manager, session_id, request.quality, request.response_time)
    card = manager.current_card(session_id)
    _release_if_finished(manager, result.session)
    return AnswerResponse(
        previous_state=CardStateResponse.model_validate(result.previous_state),
        new_state=CardStateResponse.model_validate(result.new_state),
        session=SessionStateResponse.model_validate(result.session),
        current_card=CardStateResponse.model_validate(card) if card is not None else None,
        session_complete=result.session.status.is_terminal,
    )


@router.post("/{session_id}/pause", response_model=SessionStateResponse)
async def session_pause(
    session_id: str,
    manager: SessionManager = Depends(get_manager),
) -> SessionStateResponse:
    return SessionStateResponse.model_validate(manager.pause(session_id))


@router.post("/{session_id}/resume", response_model=SessionStateResponse)
async def session_resume(
    session_id: str,
    manager: SessionManager = Depends(get_manager),
) -> SessionStateResponse:
    return SessionStateResponse.model_validate(manager.resume(session_id))


@router.post("/{session_id}/abandon", response_model=SessionStateResponse)
async def session_abandon(
    session_id: str,
    manager: SessionManager = Depends(get_manager),
) -> SessionStateResponse:
    """End the session early; unanswered cards keep their schedule."""
    data = manager.abandon(session_id)
    _release_if_finished(manager, data)
    return SessionStateResponse.model_validate(data)
