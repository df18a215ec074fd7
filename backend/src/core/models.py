"""Core Data Models - Pydantic models for type safety.

All models are value objects with no behavior beyond validation.
"""

from datetime import datetime
from datetime import date as DateType
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, field_validator
import uuid


# Upper bound on the XP a single completion can grant
MAX_XP_REWARD = 10_000


class Frequency(str, Enum):
    """How often a habit is meant to be performed."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Difficulty(str, Enum):
    """Difficulty tier of a habit, mapped to an XP reward in presets."""

    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"
    EPIC = "Epic"


class User(BaseModel):
    """User record stored in Firestore.

    Only total_xp is persisted; level and in-level progress are always
    derived from it with level_info().
    """

    username: str = Field(min_length=1)
    email: str
    api_key_hash: str = Field(description="SHA256 hash of API key - never store plaintext")
    total_xp: int = Field(default=0, ge=0, description="Cumulative XP, floored at zero")
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Habit(BaseModel):
    """A habit owned by exactly one user."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=100, description="Name of the habit")
    description: Optional[str] = Field(default=None)
    frequency: Frequency = Field(default=Frequency.DAILY)
    color: str = Field(default="#3b82f6")
    difficulty: Optional[Difficulty] = Field(default=None)
    xp_reward: int = Field(default=0, ge=0, le=MAX_XP_REWARD, description="XP granted for one completion")
    created_at: datetime = Field(default_factory=datetime.utcnow)


class CompletionRecord(BaseModel):
    """Whether a habit was done on one calendar day.

    At most one record exists per (habit_id, date); the id is derived from
    that pair.
    """

    id: str = Field(min_length=1)
    habit_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    date: datetime = Field(description="Midnight UTC of the tracked day")
    completed: bool = Field(default=True)
    notes: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class LevelInfo(BaseModel):
    """Level and progress derived from a cumulative XP total."""

    level: int = Field(ge=1)
    xp: int = Field(ge=0, description="Progress within the current level")
    xp_to_next_level: int = Field(gt=0, description="Cost of the current level")


class CompletionSubmission(BaseModel):
    """A request to mark a habit done (or not done) for a day.

    Fields left out of the payload are absent and keep the stored value.
    `notes` may be sent as null to clear it; `completed` may not.
    """

    habit_id: str = Field(min_length=1)
    date: datetime
    completed: Optional[bool] = None
    notes: Optional[str] = None

    @field_validator("completed")
    @classmethod
    def completed_not_null(cls, value: Optional[bool]) -> bool:
        if value is None:
            raise ValueError("completed must be true or false when provided")
        return value

    def provides(self, field: str) -> bool:
        """True if the field was explicitly present in the submission."""
        return field in self.model_fields_set


class CompletionChange(BaseModel):
    """Outcome of resolving a submission against the stored record."""

    record: CompletionRecord
    previous_completed: Optional[bool] = Field(description="None if no record existed")
    xp_delta: int


class HabitSummary(BaseModel):
    """Completions of one habit within a report window."""

    habit_id: str
    name: str
    completed_days: int = Field(ge=0)
    xp_earned: int = Field(ge=0)


class DaySummary(BaseModel):
    """Summary for a single day in weekly report."""

    record_date: DateType
    completed_count: int = Field(ge=0)
    xp_earned: int = Field(ge=0)


class WeeklyReport(BaseModel):
    """Weekly report with daily summaries and aggregate metrics."""

    week_start: DateType
    week_end: DateType
    daily_summaries: list[DaySummary]
    habit_summaries: list[HabitSummary]
    total_completions: int
    xp_earned: int
    days_active: int
    completion_rate: float = Field(description="Completions / (habits * 7), 0 without habits")
