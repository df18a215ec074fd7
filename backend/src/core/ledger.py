"""Completion Ledger - Pure functions for completion records and XP.

Decides how a submission changes a (habit, day) record and how much XP the
change is worth. Persistence and locking live in the shell.
"""

from datetime import date, datetime, time, timezone
from typing import Optional

from .errors import NotFoundError
from .models import CompletionChange, CompletionRecord, CompletionSubmission, Habit


def normalize_record_date(value: date | datetime) -> datetime:
    """Truncate a timestamp to midnight UTC of its calendar day.

    Naive datetimes are taken to be UTC already.

    Args:
        value: A date or datetime

    Returns:
        Timezone-aware datetime at 00:00:00 UTC
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        value = value.date()
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def record_id(habit_id: str, record_date: date | datetime) -> str:
    """Document id of the single record for a habit on a day."""
    day = normalize_record_date(record_date).date()
    return f"{habit_id}_{day.isoformat()}"


def completion_xp_delta(previous: Optional[bool], current: Optional[bool], reward: int) -> int:
    """XP change for a record moving between completion states.

    Args:
        previous: Prior completed flag, None if no record existed
        current: New completed flag, None if the record is being deleted
        reward: The habit's xp_reward

    Returns:
        +reward when becoming complete, -reward when leaving complete, else 0
    """
    was_complete = bool(previous)
    is_complete = bool(current)

    if was_complete == is_complete:
        return 0
    return reward if is_complete else -reward


def apply_xp_delta(total_xp: int, delta: int) -> int:
    """Apply a delta to a total, flooring at zero.

    Over-deduction is clamped; the lost remainder is not remembered.
    """
    return max(0, total_xp + delta)


def resolve_submission(
    submission: CompletionSubmission,
    habit: Habit,
    user_id: str,
    existing: CompletionRecord | None = None,
    now: datetime | None = None,
) -> CompletionChange:
    """Work out the record and XP delta a submission produces.

    A new record defaults to completed. An existing record keeps any field
    the submission leaves out.

    Args:
        submission: The validated submission
        habit: The habit being tracked
        user_id: The authenticated caller
        existing: The stored record for (habit, day), if any
        now: Timestamp for created_at/updated_at (defaults to utcnow)

    Returns:
        CompletionChange with the record to persist and the XP delta

    Raises:
        NotFoundError: If the habit belongs to a different user
    """
    if habit.user_id != user_id:
        raise NotFoundError("Habit not found")

    if now is None:
        now = datetime.utcnow()

    record_date = normalize_record_date(submission.date)

    if existing is None:
        record = CompletionRecord(
            id=record_id(habit.id, record_date),
            habit_id=habit.id,
            user_id=user_id,
            date=record_date,
            completed=submission.completed if submission.provides("completed") else True,
            notes=submission.notes,
            created_at=now,
            updated_at=now,
        )
        previous = None
    else:
        updates: dict = {"updated_at": now}
        if submission.provides("completed"):
            updates["completed"] = submission.completed
        if submission.provides("notes"):
            updates["notes"] = submission.notes
        record = existing.model_copy(update=updates)
        previous = existing.completed

    return CompletionChange(
        record=record,
        previous_completed=previous,
        xp_delta=completion_xp_delta(previous, record.completed, habit.xp_reward),
    )


def retraction_xp_delta(record: CompletionRecord, habit: Habit | None) -> int:
    """XP change for deleting a record.

    Args:
        record: The record being deleted
        habit: Its habit, or None if the habit was already deleted

    Returns:
        -reward for a completed record, 0 otherwise or when the habit is gone
    """
    if habit is None:
        return 0
    return completion_xp_delta(record.completed, None, habit.xp_reward)
