"""Report Generation - Pure functions for generating reports.

All functions are pure: same input always produces same output, no side effects.
"""

from datetime import date, datetime, timedelta

from .ledger import normalize_record_date
from .models import CompletionRecord, DaySummary, Habit, HabitSummary, WeeklyReport


def generate_day_summary(
    record_date: date, records: list[CompletionRecord], habits: dict[str, Habit]
) -> DaySummary:
    """Generate a summary for a single day's records.

    Args:
        record_date: The day being summarized
        records: Records for that day
        habits: Habits by id; records whose habit is gone earn no XP

    Returns:
        DaySummary with completion count and XP earned
    """
    completed = [r for r in records if r.completed]
    xp_earned = sum(habits[r.habit_id].xp_reward for r in completed if r.habit_id in habits)

    return DaySummary(
        record_date=record_date,
        completed_count=len(completed),
        xp_earned=xp_earned,
    )


def calculate_completion_rate(total_completions: int, habit_count: int, days: int = 7) -> float:
    """Fraction of possible habit-days that were completed.

    Args:
        total_completions: Completed records in the period
        habit_count: Number of habits the user tracks
        days: Length of the period

    Returns:
        Rate between 0 and 1 (rounded to 3 places), 0 if there are no habits
    """
    possible = habit_count * days
    if possible <= 0:
        return 0.0
    return round(min(total_completions / possible, 1.0), 3)


def generate_weekly_report(
    records: list[CompletionRecord],
    habits: list[Habit],
    week_start: date | None = None,
) -> WeeklyReport:
    """Generate a weekly report from completion records.

    Args:
        records: Completion records (may be empty or span more than a week)
        habits: The user's current habits
        week_start: Start date of the week (defaults to 6 days before today, UTC)

    Returns:
        WeeklyReport with daily and per-habit summaries
    """
    if week_start is None:
        week_start = datetime.utcnow().date() - timedelta(days=6)

    week_end = week_start + timedelta(days=6)
    habits_by_id = {h.id: h for h in habits}

    # Group the week's records by calendar day
    by_day: dict[date, list[CompletionRecord]] = {}
    for record in records:
        day = normalize_record_date(record.date).date()
        if week_start <= day <= week_end:
            by_day.setdefault(day, []).append(record)

    daily_summaries = [
        generate_day_summary(day, by_day[day], habits_by_id) for day in sorted(by_day)
    ]

    week_records = [r for day_records in by_day.values() for r in day_records]
    habit_summaries = []
    for habit in habits:
        completed_days = sum(1 for r in week_records if r.habit_id == habit.id and r.completed)
        habit_summaries.append(
            HabitSummary(
                habit_id=habit.id,
                name=habit.name,
                completed_days=completed_days,
                xp_earned=completed_days * habit.xp_reward,
            )
        )

    total_completions = sum(s.completed_count for s in daily_summaries)

    return WeeklyReport(
        week_start=week_start,
        week_end=week_end,
        daily_summaries=daily_summaries,
        habit_summaries=habit_summaries,
        total_completions=total_completions,
        xp_earned=sum(s.xp_earned for s in daily_summaries),
        days_active=sum(1 for s in daily_summaries if s.completed_count > 0),
        completion_rate=calculate_completion_rate(total_completions, len(habits)),
    )
