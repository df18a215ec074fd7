"""Unit tests for the completion ledger - pure functions, no mocks needed."""

from datetime import date, datetime, timedelta, timezone

import pytest

from src.core.errors import NotFoundError
from src.core.ledger import (
    apply_xp_delta,
    completion_xp_delta,
    normalize_record_date,
    record_id,
    resolve_submission,
    retraction_xp_delta,
)
from src.core.models import CompletionSubmission, Habit


NOW = datetime(2024, 12, 28, 9, 0)


@pytest.fixture
def habit():
    return Habit(id="habit-1", user_id="user-1", name="Read", xp_reward=50)


class TestNormalizeRecordDate:
    """Tests for normalize_record_date."""

    def test_strips_time_of_day(self):
        """Hours, minutes, seconds and microseconds are dropped."""
        result = normalize_record_date(datetime(2024, 12, 28, 23, 59, 59, 999999))
        assert result == datetime(2024, 12, 28, tzinfo=timezone.utc)

    def test_naive_is_treated_as_utc(self):
        """Naive datetimes keep their calendar day."""
        assert normalize_record_date(datetime(2024, 12, 28, 1)).tzinfo == timezone.utc

    def test_aware_is_converted_to_utc_first(self):
        """An aware timestamp lands on its UTC calendar day."""
        tz = timezone(timedelta(hours=-5))
        late_evening = datetime(2024, 12, 28, 22, 0, tzinfo=tz)  # 03:00 UTC next day
        assert normalize_record_date(late_evening) == datetime(2024, 12, 29, tzinfo=timezone.utc)

    def test_plain_date(self):
        """A date becomes midnight UTC of that day."""
        assert normalize_record_date(date(2024, 12, 28)) == datetime(
            2024, 12, 28, tzinfo=timezone.utc
        )


class TestRecordId:
    """Tests for record_id."""

    def test_same_day_same_id(self):
        """Any time on one day maps to one record id."""
        assert record_id("h1", datetime(2024, 12, 28, 8)) == record_id("h1", datetime(2024, 12, 28, 20))

    def test_different_days_differ(self):
        assert record_id("h1", date(2024, 12, 28)) != record_id("h1", date(2024, 12, 29))

    def test_format(self):
        assert record_id("h1", date(2024, 12, 28)) == "h1_2024-12-28"


class TestCompletionXpDelta:
    """Tests for completion_xp_delta covering every transition."""

    @pytest.mark.parametrize(
        "previous, current, expected",
        [
            (None, True, 50),  # absent -> complete
            (None, False, 0),  # absent -> incomplete
            (False, True, 50),  # incomplete -> complete
            (True, False, -50),  # complete -> incomplete
            (True, None, -50),  # complete -> deleted
            (False, None, 0),  # incomplete -> deleted
            (True, True, 0),
            (False, False, 0),
        ],
    )
    def test_transitions(self, previous, current, expected):
        assert completion_xp_delta(previous, current, 50) == expected

    def test_zero_reward(self):
        """Habits without a reward never move XP."""
        assert completion_xp_delta(None, True, 0) == 0


class TestApplyXpDelta:
    """Tests for apply_xp_delta."""

    def test_award(self):
        assert apply_xp_delta(100, 50) == 150

    def test_deduct(self):
        assert apply_xp_delta(100, -50) == 50

    def test_floor_at_zero(self):
        """Over-deduction clamps at zero."""
        assert apply_xp_delta(30, -100) == 0

    def test_lost_remainder_not_restored(self):
        """A clamped deduction is not banked for later awards."""
        total = apply_xp_delta(30, -100)
        total = apply_xp_delta(total, 100)
        assert total == 100


class TestResolveSubmission:
    """Tests for resolve_submission."""

    def test_new_record_defaults_to_completed(self, habit):
        """Omitted completed creates a completed record and awards XP."""
        submission = CompletionSubmission(habit_id=habit.id, date="2024-12-28T15:30:00Z")
        change = resolve_submission(submission, habit, "user-1", None, now=NOW)

        assert change.record.completed is True
        assert change.previous_completed is None
        assert change.xp_delta == 50
        assert change.record.date == datetime(2024, 12, 28, tzinfo=timezone.utc)
        assert change.record.id == "habit-1_2024-12-28"

    def test_new_incomplete_record_awards_nothing(self, habit):
        submission = CompletionSubmission(habit_id=habit.id, date="2024-12-28", completed=False)
        change = resolve_submission(submission, habit, "user-1", None, now=NOW)

        assert change.record.completed is False
        assert change.xp_delta == 0

    def test_toggle_off_deducts(self, habit):
        first = resolve_submission(
            CompletionSubmission(habit_id=habit.id, date="2024-12-28"), habit, "user-1", None, now=NOW
        )
        second = resolve_submission(
            CompletionSubmission(habit_id=habit.id, date="2024-12-28T18:00:00", completed=False),
            habit,
            "user-1",
            first.record,
            now=NOW,
        )

        assert second.previous_completed is True
        assert second.record.completed is False
        assert second.xp_delta == -50
        assert second.record.id == first.record.id

    def test_omitted_completed_keeps_prior_value(self, habit):
        """An update without completed is not an overwrite back to true."""
        existing = resolve_submission(
            CompletionSubmission(habit_id=habit.id, date="2024-12-28", completed=False),
            habit,
            "user-1",
            None,
            now=NOW,
        ).record
        change = resolve_submission(
            CompletionSubmission(habit_id=habit.id, date="2024-12-28", notes="rest day"),
            habit,
            "user-1",
            existing,
            now=NOW,
        )

        assert change.record.completed is False
        assert change.record.notes == "rest day"
        assert change.xp_delta == 0

    def test_notes_kept_unless_given(self, habit):
        existing = resolve_submission(
            CompletionSubmission(habit_id=habit.id, date="2024-12-28", notes="felt good"),
            habit,
            "user-1",
            None,
            now=NOW,
        ).record
        change = resolve_submission(
            CompletionSubmission(habit_id=habit.id, date="2024-12-28", completed=True),
            habit,
            "user-1",
            existing,
            now=NOW,
        )
        assert change.record.notes == "felt good"

    def test_explicit_null_clears_notes(self, habit):
        existing = resolve_submission(
            CompletionSubmission(habit_id=habit.id, date="2024-12-28", notes="felt good"),
            habit,
            "user-1",
            None,
            now=NOW,
        ).record
        change = resolve_submission(
            CompletionSubmission(habit_id=habit.id, date="2024-12-28", notes=None),
            habit,
            "user-1",
            existing,
            now=NOW,
        )
        assert change.record.notes is None

    def test_round_trip_nets_zero(self, habit):
        """complete -> incomplete -> complete, twice, sums to the first award."""
        record = None
        total = 0
        for completed in (True, False, True, False, True):
            change = resolve_submission(
                CompletionSubmission(habit_id=habit.id, date="2024-12-28", completed=completed),
                habit,
                "user-1",
                record,
                now=NOW,
            )
            record = change.record
            total = apply_xp_delta(total, change.xp_delta)
        assert total == 50

    def test_foreign_habit_rejected(self, habit):
        submission = CompletionSubmission(habit_id=habit.id, date="2024-12-28")
        with pytest.raises(NotFoundError):
            resolve_submission(submission, habit, "someone-else", None, now=NOW)


class TestRetractionXpDelta:
    """Tests for retraction_xp_delta."""

    def _record(self, habit, completed):
        submission = CompletionSubmission(habit_id=habit.id, date="2024-12-28", completed=completed)
        return resolve_submission(submission, habit, "user-1", None, now=NOW).record

    def test_completed_record_deducts_reward(self, habit):
        assert retraction_xp_delta(self._record(habit, True), habit) == -50

    def test_incomplete_record_changes_nothing(self, habit):
        assert retraction_xp_delta(self._record(habit, False), habit) == 0

    def test_deleted_habit_skips_deduction(self, habit):
        assert retraction_xp_delta(self._record(habit, True), None) == 0
