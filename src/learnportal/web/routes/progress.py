"""Lesson progress and timer endpoints.

Every route acts on the authenticated caller's own records.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from learnportal.core.engine import PortalEngine
from learnportal.core.errors import ValidationError
from learnportal.core.models import LESSON_ID_PATTERN, User, make_lesson_id
from learnportal.web.dependencies import get_current_user, get_engine
from learnportal.web.schemas import (
    ProgressResponse,
    ProgressSummaryResponse,
    ProgressUpdate,
    TimerRequest,
    TimerResponse,
    ToggleRequest,
    ToggleResponse,
)

router = APIRouter(prefix="/api/progress", tags=["progress"])


def _check_lesson_id(lesson_id: str) -> None:
    if not LESSON_ID_PATTERN.match(lesson_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid lesson id '{lesson_id}'",
        )


@router.get("", response_model=ProgressSummaryResponse)
async def list_progress(
    user: User = Depends(get_current_user),
    engine: PortalEngine = Depends(get_engine),
) -> ProgressSummaryResponse:
    """All progress of the caller, most recently updated first."""
    tracker = engine.progress
    return ProgressSummaryResponse(
        lessons=[ProgressResponse.from_progress(p) for p in tracker.get_all_progress()],
        completed=tracker.completed_count(),
        total_time_spent=tracker.total_time_spent(),
        last_activity=tracker.last_activity(),
    )


@router.post("/toggle", response_model=ToggleResponse)
async def toggle_lesson(
    body: ToggleRequest,
    user: User = Depends(get_current_user),
    engine: PortalEngine = Depends(get_engine),
) -> ToggleResponse:
    """Flip a lesson between completed and its previous status."""
    new_status = engine.progress.toggle_lesson(body.week, body.day, body.lesson_index, body.title)
    return ToggleResponse(
        lesson_id=make_lesson_id(body.week, body.day, body.lesson_index),
        status=new_status,
    )


@router.post("/timer/start", response_model=TimerResponse)
async def start_timer(
    body: TimerRequest,
    user: User = Depends(get_current_user),
    engine: PortalEngine = Depends(get_engine),
) -> TimerResponse:
    """Start a lesson timer (no-op if it is already running)."""
    _check_lesson_id(body.lesson_id)
    return TimerResponse.from_timer(engine.progress.start_timer(body.lesson_id))


@router.post("/timer/stop", response_model=TimerResponse)
async def stop_timer(
    body: TimerRequest,
    user: User = Depends(get_current_user),
    engine: PortalEngine = Depends(get_engine),
) -> TimerResponse:
    """Stop a lesson timer (no-op if it is not running)."""
    _check_lesson_id(body.lesson_id)
    return TimerResponse.from_timer(engine.progress.stop_timer(body.lesson_id))


@router.get("/{lesson_id}", response_model=ProgressResponse)
async def get_progress(
    lesson_id: str,
    user: User = Depends(get_current_user),
    engine: PortalEngine = Depends(get_engine),
) -> ProgressResponse:
    """Progress of one lesson."""
    _check_lesson_id(lesson_id)
    progress = engine.progress.get_progress(lesson_id)
    if progress is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No progress for lesson '{lesson_id}'",
        )
    return ProgressResponse.from_progress(progress)


@router.put("/{lesson_id}", response_model=ProgressResponse)
async def save_progress(
    lesson_id: str,
    body: ProgressUpdate,
    user: User = Depends(get_current_user),
    engine: PortalEngine = Depends(get_engine),
) -> ProgressResponse:
    """Upsert the progress of one lesson."""
    try:
        progress = engine.progress.save_progress(
            lesson_id, body.week, body.day, body.lesson_index, body.status, body.time_spent
        )
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return ProgressResponse.from_progress(progress)
