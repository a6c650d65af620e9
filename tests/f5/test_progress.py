"""Tests for lesson progress records and toggling (F5)."""

import pytest

from learnportal.core.errors import SessionError, ValidationError
from learnportal.core.models import LessonStatus, make_lesson_id, parse_lesson_id
from learnportal.core.progress import ProgressTracker


class TestLessonIds:
    """Tests for the composite lesson id."""

    def test_make_and_parse(self):
        assert make_lesson_id(3, 2, 1) == "3-2-1"
        assert parse_lesson_id("3-2-1") == (3, 2, 1)

    def test_parse_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_lesson_id("week3")


class TestSaveProgress:
    """Tests for save_progress / get_progress."""

    def test_round_trip(self, tracker):
        """Stored fields come back unchanged."""
        tracker.save_progress("1-2-0", 1, 2, 0, LessonStatus.COMPLETED, time_spent=1200)
        progress = tracker.get_progress("1-2-0")

        assert progress.status == LessonStatus.COMPLETED
        assert progress.time_spent == 1200
        assert progress.week == 1
        assert progress.day == 2
        assert progress.completed_at is not None
        assert progress.started_at is not None

    def test_upsert_single_record(self, tracker, store):
        """Saving the same lesson twice keeps one record."""
        tracker.save_progress("1-1-0", 1, 1, 0, "in_progress")
        tracker.save_progress("1-1-0", 1, 1, 0, "completed", time_spent=50)
        assert len(store.get_all("progress")) == 1

    def test_started_at_kept_on_update(self, tracker, clock):
        first = tracker.save_progress("1-1-0", 1, 1, 0, "in_progress")
        clock.advance(minutes=5)
        second = tracker.save_progress("1-1-0", 1, 1, 0, "completed")
        assert second.started_at == first.started_at

    def test_reopening_clears_completion(self, tracker):
        tracker.save_progress("1-1-0", 1, 1, 0, "completed")
        progress = tracker.save_progress("1-1-0", 1, 1, 0, "in_progress")
        assert progress.completed_at is None
        assert not tracker.is_completed("1-1-0")

    def test_time_spent_never_decreases(self, tracker):
        """A lower timeSpent keeps the stored total."""
        tracker.save_progress("1-1-0", 1, 1, 0, "in_progress", time_spent=1200)
        progress = tracker.save_progress("1-1-0", 1, 1, 0, "in_progress", time_spent=100)
        assert progress.time_spent == 1200
        assert tracker.get_progress("1-1-0").time_spent == 1200
        assert tracker.timer_state("1-1-0").total_time == 1200

    def test_mismatched_id_rejected(self, tracker):
        with pytest.raises(ValidationError):
            tracker.save_progress("1-1-1", 1, 1, 0, "completed")

    def test_unknown_status_rejected(self, tracker):
        with pytest.raises(ValidationError):
            tracker.save_progress("1-1-0", 1, 1, 0, "finished")

    def test_negative_time_rejected(self, tracker):
        with pytest.raises(ValidationError):
            tracker.save_progress("1-1-0", 1, 1, 0, "in_progress", time_spent=-1)

    def test_requires_current_user(self, store, clock):
        """Progress operations fail without a logged-in user."""
        store.set_current_user(None)
        tracker = ProgressTracker(store, clock=clock)
        with pytest.raises(SessionError):
            tracker.save_progress("1-1-0", 1, 1, 0, "completed")

    def test_scoped_per_user(self, tracker, store):
        """Each user sees only their own progress."""
        tracker.save_progress("1-1-0", 1, 1, 0, "completed")
        store.set_current_user("bob")
        assert tracker.get_progress("1-1-0") is None
        assert not tracker.is_completed("1-1-0")


class TestQueries:
    """Tests for list queries."""

    def test_week_progress_ordered(self, tracker):
        tracker.save_progress("2-3-1", 2, 3, 1, "completed")
        tracker.save_progress("2-1-0", 2, 1, 0, "in_progress")
        tracker.save_progress("2-3-0", 2, 3, 0, "completed")
        tracker.save_progress("1-1-0", 1, 1, 0, "completed")

        ids = [p.lesson_id for p in tracker.get_week_progress(2)]
        assert ids == ["2-1-0", "2-3-0", "2-3-1"]

    def test_all_progress_most_recent_first(self, tracker, clock):
        tracker.save_progress("1-1-0", 1, 1, 0, "completed")
        clock.advance(seconds=10)
        tracker.save_progress("1-1-1", 1, 1, 1, "completed")
        assert [p.lesson_id for p in tracker.get_all_progress()] == ["1-1-1", "1-1-0"]

    def test_last_activity(self, tracker, clock):
        assert tracker.last_activity() is None
        tracker.save_progress("1-1-0", 1, 1, 0, "completed")
        assert tracker.last_activity() == clock.now().isoformat()

    def test_load_from_disk(self, store, clock):
        """A fresh tracker rebuilds completion flags and totals from disk."""
        first = ProgressTracker(store, clock=clock)
        first.save_progress("1-1-0", 1, 1, 0, "completed", time_spent=700)
        first.save_progress("1-1-1", 1, 1, 1, "in_progress", time_spent=300)

        second = ProgressTracker(store, clock=clock)
        assert second.load() == 2
        assert second.is_completed("1-1-0")
        assert second.completed_count() == 1
        assert second.total_time_spent() == 1000


class TestToggle:
    """Tests for toggle_lesson."""

    def test_toggle_completes(self, tracker):
        assert tracker.toggle_lesson(1, 1, 0, "Intro") == LessonStatus.COMPLETED
        assert tracker.is_completed("1-1-0")

    def test_toggle_twice_restores_previous_status(self, tracker):
        """Toggling back returns to the status before completion."""
        tracker.save_progress("1-1-0", 1, 1, 0, "in_progress", time_spent=400)
        tracker.toggle_lesson(1, 1, 0)
        status = tracker.toggle_lesson(1, 1, 0)

        assert status == LessonStatus.IN_PROGRESS
        progress = tracker.get_progress("1-1-0")
        assert progress.status == LessonStatus.IN_PROGRESS
        assert progress.time_spent == 400

    def test_toggle_twice_from_nothing(self, tracker):
        tracker.toggle_lesson(1, 1, 0)
        assert tracker.toggle_lesson(1, 1, 0) == LessonStatus.NOT_STARTED
        assert not tracker.is_completed("1-1-0")

    def test_toggle_audited(self, tracker, audit):
        tracker.toggle_lesson(1, 1, 0, "Intro")
        tracker.toggle_lesson(1, 1, 0, "Intro")
        actions = [e.action for e in audit.list()]
        assert "lesson_completed" in actions
        assert "lesson_reopened" in actions

    def test_write_failure_rolls_back(self, tracker, failing_writes):
        """A failed write restores the completion flag and returns the original status."""
        assert tracker.completed_count() == 0
        failing_writes()
        status = tracker.toggle_lesson(1, 1, 0)

        assert status == LessonStatus.NOT_STARTED
        assert not tracker.is_completed("1-1-0")
