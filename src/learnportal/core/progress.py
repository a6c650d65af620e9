"""Lesson progress and per-lesson timers.

Progress lives in the current user's "progress" table, one record per
lessonId. Completion flags and timers are mirrored in memory per user so
the view can read them without touching disk; every change is applied to
memory first, then persisted, and rolled back if the write fails.

Timer state machine per lesson: stopped <-> running. Running timers are
transient and are not restored after a restart; only the cumulative
timeSpent is persisted.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field

import structlog

from learnportal.core.clock import Clock, SystemClock, epoch_ms, isoformat, parse_iso
from learnportal.core.errors import PersistenceError, SessionError, ValidationError
from learnportal.core.models import (
    PROGRESS_TABLE,
    LessonProgress,
    LessonStatus,
    TimerState,
    make_lesson_id,
    parse_lesson_id,
)
from learnportal.db.audit_repository import AuditRepository
from learnportal.db.record_store import RecordStore

logger = structlog.get_logger(__name__)


@dataclass
class _ProgressBook:
    """In-memory view of one user's progress."""

    completed: set[str] = field(default_factory=set)
    timers: dict[str, TimerState] = field(default_factory=dict)


class ProgressTracker:
    """Reads and writes lesson progress for the store's current user."""

    def __init__(
        self,
        store: RecordStore,
        audit: AuditRepository | None = None,
        clock: Clock | None = None,
    ):
        self.store = store
        self.audit = audit or AuditRepository(store, clock)
        self._clock = clock or SystemClock()
        self._books: dict[str, _ProgressBook] = {}

    # -------------------------------------------------------------------------
    # In-memory state
    # -------------------------------------------------------------------------

    def _namespace(self) -> str:
        username = self.store.current_user
        if username is None:
            raise SessionError("No user is logged in")
        return username

    def _book(self) -> _ProgressBook:
        ns = self._namespace()
        if ns not in self._books:
            self._books[ns] = self._build_book()
        return self._books[ns]

    def _build_book(self) -> _ProgressBook:
        book = _ProgressBook()
        for progress in self._read_all():
            if progress.status == LessonStatus.COMPLETED:
                book.completed.add(progress.lesson_id)
            book.timers[progress.lesson_id] = TimerState(
                progress.lesson_id, total_time=progress.time_spent
            )
        return book

    def load(self) -> int:
        """Rebuild the current user's completion set and timers from disk.

        Returns:
            Number of progress records loaded
        """
        ns = self._namespace()
        self._books[ns] = self._build_book()
        logger.info(
            "progress_loaded",
            username=ns,
            lessons=len(self._books[ns].timers),
            completed=len(self._books[ns].completed),
        )
        return len(self._books[ns].timers)

    def is_loaded(self, username: str) -> bool:
        return username in self._books

    def forget(self, username: str | None = None) -> None:
        """Drop cached state for one user (or everyone when None)."""
        if username is None:
            self._books.clear()
        else:
            self._books.pop(username, None)

    def _read_all(self) -> list[LessonProgress]:
        result = []
        for record in self.store.get_all(PROGRESS_TABLE):
            try:
                result.append(LessonProgress.from_dict(record))
            except (KeyError, ValueError) as e:
                logger.warning("progress_record_skipped", record_id=record.get("id"), error=str(e))
        return result

    # -------------------------------------------------------------------------
    # Progress records
    # -------------------------------------------------------------------------

    def save_progress(
        self,
        lesson_id: str,
        week: int,
        day: int,
        lesson_index: int,
        status: LessonStatus | str,
        time_spent: int = 0,
    ) -> LessonProgress:
        """Upsert the progress record of a lesson.

        Args:
            lesson_id: Composite id, must equal make_lesson_id(week, day, lesson_index)
            week: Week number
            day: Day number
            lesson_index: Position of the lesson within the day
            status: New status
            time_spent: Cumulative milliseconds spent; never lowers the stored value

        Returns:
            The stored progress

        Raises:
            ValidationError: Bad id, unknown status or negative time_spent
            PersistenceError: If the write fails
        """
        book = self._book()
        if lesson_id != make_lesson_id(week, day, lesson_index):
            raise ValidationError(
                f"Lesson id {lesson_id!r} does not match week/day/index", field="lesson_id"
            )
        try:
            status = LessonStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown status: {status}", field="status") from None
        if time_spent < 0:
            raise ValidationError("timeSpent must be non-negative", field="time_spent")

        now = isoformat(self._clock.now())
        existing = self.store.find_one(PROGRESS_TABLE, lambda r: r.get("lessonId") == lesson_id)
        if existing is not None:
            progress = LessonProgress.from_dict(existing)
        else:
            progress = LessonProgress(lesson_id, week, day, lesson_index, started_at=now)

        prior = progress.status
        progress.status = status
        if time_spent < progress.time_spent:
            logger.info(
                "time_spent_not_lowered",
                lesson_id=lesson_id,
                stored=progress.time_spent,
                requested=time_spent,
            )
        progress.time_spent = max(progress.time_spent, int(time_spent))
        if status == LessonStatus.COMPLETED:
            if prior != LessonStatus.COMPLETED:
                progress.completed_at = now
                progress.previous_status = prior
        else:
            progress.completed_at = None
            progress.previous_status = None

        progress.record_id = self.store.save(PROGRESS_TABLE, progress.to_dict())

        if status == LessonStatus.COMPLETED:
            book.completed.add(lesson_id)
        else:
            book.completed.discard(lesson_id)
        timer = book.timers.get(lesson_id)
        if timer is None:
            book.timers[lesson_id] = TimerState(lesson_id, total_time=progress.time_spent)
        else:
            timer.total_time = progress.time_spent

        logger.debug("progress_saved", lesson_id=lesson_id, status=status.value)
        return progress

    def get_progress(self, lesson_id: str) -> LessonProgress | None:
        record = self.store.find_one(PROGRESS_TABLE, lambda r: r.get("lessonId") == lesson_id)
        return LessonProgress.from_dict(record) if record else None

    def get_all_progress(self) -> list[LessonProgress]:
        """All progress of the current user, most recently updated first."""
        records = self.store.get_all(PROGRESS_TABLE)
        records.sort(key=lambda r: r.get("updatedAt") or r.get("timestamp") or "", reverse=True)
        return [LessonProgress.from_dict(r) for r in records if r.get("lessonId")]

    def get_week_progress(self, week: int) -> list[LessonProgress]:
        """Progress of one week ordered by day and lesson."""
        items = [p for p in self._read_all() if p.week == week]
        return sorted(items, key=lambda p: (p.day, p.lesson_index))

    def is_completed(self, lesson_id: str) -> bool:
        return lesson_id in self._book().completed

    def completed_count(self) -> int:
        return len(self._book().completed)

    # -------------------------------------------------------------------------
    # Toggle
    # -------------------------------------------------------------------------

    def toggle_lesson(self, week: int, day: int, lesson_index: int, title: str = "") -> LessonStatus:
        """Flip a lesson between completed and its previous status.

        The completion set is updated before the write. If the write fails
        the set is restored, a warning is logged and the original status is
        returned.
        """
        book = self._book()
        lesson_id = make_lesson_id(week, day, lesson_index)
        existing = self.get_progress(lesson_id)
        original = existing.status if existing else LessonStatus.NOT_STARTED
        was_completed = original == LessonStatus.COMPLETED

        if was_completed:
            book.completed.discard(lesson_id)
            new_status = (existing.previous_status if existing else None) or LessonStatus.NOT_STARTED
        else:
            book.completed.add(lesson_id)
            new_status = LessonStatus.COMPLETED

        time_spent = existing.time_spent if existing else 0
        try:
            self.save_progress(lesson_id, week, day, lesson_index, new_status, time_spent)
        except PersistenceError as e:
            if was_completed:
                book.completed.add(lesson_id)
            else:
                book.completed.discard(lesson_id)
            logger.warning("lesson_toggle_rolled_back", lesson_id=lesson_id, error=str(e))
            return original

        self.audit.log(
            "lesson_completed" if new_status == LessonStatus.COMPLETED else "lesson_reopened",
            "lesson",
            lesson_id,
            {"title": title, "week": week, "day": day, "lessonIndex": lesson_index},
        )
        return new_status

    # -------------------------------------------------------------------------
    # Timers
    # -------------------------------------------------------------------------

    def timer_state(self, lesson_id: str) -> TimerState:
        """Current timer of a lesson (stopped with zero time if never used)."""
        book = self._book()
        timer = book.timers.get(lesson_id)
        if timer is None:
            return TimerState(lesson_id)
        return copy.copy(timer)

    def start_timer(self, lesson_id: str) -> TimerState:
        """Start a lesson timer. No-op with a warning if it is running."""
        week, day, index = parse_lesson_id(lesson_id)
        book = self._book()
        current = book.timers.get(lesson_id) or TimerState(lesson_id)
        if current.is_active:
            logger.warning("timer_already_running", lesson_id=lesson_id)
            return copy.copy(current)

        running = TimerState(
            lesson_id,
            total_time=current.total_time,
            is_active=True,
            start_time=epoch_ms(self._clock.now()),
            last_session=current.last_session,
        )
        book.timers[lesson_id] = running

        existing = self.get_progress(lesson_id)
        status = existing.status if existing else LessonStatus.IN_PROGRESS
        if status == LessonStatus.NOT_STARTED:
            status = LessonStatus.IN_PROGRESS
        try:
            self.save_progress(lesson_id, week, day, index, status, running.total_time)
        except PersistenceError as e:
            book.timers[lesson_id] = current
            logger.warning("timer_start_rolled_back", lesson_id=lesson_id, error=str(e))
            return copy.copy(current)

        self.audit.log("timer_started", "lesson", lesson_id, {"totalTime": running.total_time})
        return copy.copy(running)

    def stop_timer(self, lesson_id: str) -> TimerState:
        """Stop a lesson timer and add the elapsed time to timeSpent.

        No-op with a warning if the timer is not running.
        """
        week, day, index = parse_lesson_id(lesson_id)
        book = self._book()
        current = book.timers.get(lesson_id)
        if current is None or not current.is_active:
            logger.warning("timer_not_running", lesson_id=lesson_id)
            return copy.copy(current) if current else TimerState(lesson_id)

        delta = max(0, epoch_ms(self._clock.now()) - current.start_time)
        stopped = TimerState(
            lesson_id,
            total_time=current.total_time + delta,
            is_active=False,
            last_session=delta,
        )
        book.timers[lesson_id] = stopped

        existing = self.get_progress(lesson_id)
        status = existing.status if existing else LessonStatus.IN_PROGRESS
        try:
            self.save_progress(lesson_id, week, day, index, status, stopped.total_time)
        except PersistenceError as e:
            book.timers[lesson_id] = current
            logger.warning("timer_stop_rolled_back", lesson_id=lesson_id, error=str(e))
            return copy.copy(current)

        self.audit.log(
            "timer_stopped",
            "lesson",
            lesson_id,
            {"sessionTime": delta, "totalTime": stopped.total_time},
        )
        return copy.copy(stopped)

    def total_time_spent(self) -> int:
        """Milliseconds across all lessons, running timers included."""
        now_ms = epoch_ms(self._clock.now())
        return sum(timer.elapsed(now_ms) for timer in self._book().timers.values())

    def last_activity(self) -> str | None:
        """Most recent progress update of the current user."""
        latest = None
        for record in self.store.get_all(PROGRESS_TABLE):
            moment = parse_iso(record.get("updatedAt"))
            if moment and (latest is None or moment > latest):
                latest = moment
        return isoformat(latest) if latest else None
