"""Firestore Client - Persistence for habits, completion records and XP.

This module handles all database I/O for habit tracking.
All I/O is contained here; business logic is in the core module.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Iterator

from google.api_core import exceptions as gcloud_exceptions
from google.cloud import firestore

from ..core.errors import ConflictError, NotFoundError, StorageUnavailableError
from ..core.ledger import (
    apply_xp_delta,
    normalize_record_date,
    record_id,
    resolve_submission,
    retraction_xp_delta,
)
from ..core.leveling import level_info
from ..core.models import CompletionRecord, CompletionSubmission, Habit, LevelInfo, User


logger = logging.getLogger(__name__)


@dataclass
class FirestoreConfig:
    """Configuration for Firestore client.

    Attributes:
        project_id: GCP project ID (None for default)
        database: Firestore database name (None for default database)
    """

    project_id: str | None = None
    database: str | None = None


class HabitFirestoreClient:
    """Client for persisting habits, completion records and XP to Firestore.

    Document structure per user:
        users/{user_id}: { username, email, api_key_hash, total_xp, ... }
            habits/{habit_id}: { name, xp_reward, ... }
            records/{habit_id}_{YYYY-MM-DD}: { habit_id, date, completed, ... }

    The record document id makes (habit, day) unique. Ledger mutations hold a
    per-user lock and run inside a Firestore transaction.
    """

    def __init__(self, config: FirestoreConfig | None = None) -> None:
        """Initialize Firestore client.

        Args:
            config: Firestore configuration
        """
        self.config = config or FirestoreConfig()
        self._client: firestore.Client | None = None
        self._user_locks: dict[str, threading.Lock] = {}
        self._user_locks_guard = threading.Lock()

    @property
    def client(self) -> firestore.Client:
        """Lazy initialization of Firestore client."""
        if self._client is None:
            kwargs: dict[str, Any] = {}
            if self.config.project_id:
                kwargs["project"] = self.config.project_id
            if self.config.database:
                kwargs["database"] = self.config.database
            self._client = firestore.Client(**kwargs)
        return self._client

    def _user_ref(self, user_id: str) -> firestore.DocumentReference:
        """Get reference to user document."""
        return self.client.collection("users").document(user_id)

    def _habit_ref(self, user_id: str, habit_id: str) -> firestore.DocumentReference:
        """Get reference to habit document."""
        return self._user_ref(user_id).collection("habits").document(habit_id)

    def _record_ref(self, user_id: str, record_id: str) -> firestore.DocumentReference:
        """Get reference to completion record document."""
        return self._user_ref(user_id).collection("records").document(record_id)

    @contextmanager
    def _user_lock(self, user_id: str) -> Iterator[None]:
        """Serialize ledger mutations for one user within this process."""
        with self._user_locks_guard:
            lock = self._user_locks.setdefault(user_id, threading.Lock())
        with lock:
            yield

    @contextmanager
    def _storage_errors(self, action: str) -> Iterator[None]:
        """Translate Firestore failures into StorageUnavailableError."""
        try:
            yield
        except gcloud_exceptions.AlreadyExists as e:
            raise ConflictError(f"Failed to {action}: record already exists") from e
        except (gcloud_exceptions.GoogleAPICallError, gcloud_exceptions.RetryError) as e:
            logger.error("Failed to %s: %s", action, str(e))
            raise StorageUnavailableError(f"Failed to {action}") from e
        except ValueError as e:
            # Transactions that run out of commit attempts raise ValueError
            # chained to the last Aborted error
            if not isinstance(e.__cause__, gcloud_exceptions.GoogleAPICallError):
                raise
            logger.error("Failed to %s: transaction retries exhausted: %s", action, str(e))
            raise StorageUnavailableError(f"Failed to {action}") from e

    # ==================== User Operations ====================

    def get_user(self, user_id: str) -> User | None:
        """Fetch a user.

        Args:
            user_id: The user's ID

        Returns:
            User if found, None otherwise
        """
        logger.debug("Fetching user: %s", user_id[:8])
        with self._storage_errors("fetch user"):
            doc = self._user_ref(user_id).get()
        if not doc.exists:
            return None
        return User(**doc.to_dict())

    def update_username(self, user_id: str, username: str) -> User:
        """Change a user's display name.

        Raises:
            NotFoundError: If the user does not exist
        """
        logger.info("Updating username for user: %s", user_id[:8])
        user = self.get_user(user_id)
        if user is None:
            raise NotFoundError("User not found")

        updated = user.model_copy(update={"username": username})
        with self._storage_errors("update user"):
            self._user_ref(user_id).update({"username": updated.username})
        return updated

    # ==================== Habit Operations ====================

    def list_habits(self, user_id: str) -> list[Habit]:
        """Fetch all habits owned by a user."""
        logger.debug("Listing habits for user: %s", user_id[:8])
        with self._storage_errors("list habits"):
            docs = list(self._user_ref(user_id).collection("habits").stream())
        return [Habit(**doc.to_dict()) for doc in docs]

    def get_habit(self, user_id: str, habit_id: str) -> Habit | None:
        """Fetch one of the user's habits.

        Args:
            user_id: The user's ID
            habit_id: ID of the habit

        Returns:
            Habit if found, None otherwise
        """
        with self._storage_errors("fetch habit"):
            doc = self._habit_ref(user_id, habit_id).get()
        if not doc.exists:
            return None
        return Habit(**doc.to_dict())

    def create_habit(self, habit: Habit) -> Habit:
        """Save a new habit for its owner."""
        logger.info("Creating habit for %s: %s", habit.user_id[:8], habit.name)
        with self._storage_errors("create habit"):
            self._habit_ref(habit.user_id, habit.id).set(habit.model_dump(mode="json"))
        return habit

    def update_habit(self, user_id: str, habit_id: str, updates: dict) -> Habit:
        """Update fields of a habit.

        Args:
            user_id: The user's ID
            habit_id: ID of the habit to update
            updates: Fields to update

        Returns:
            The updated Habit

        Raises:
            NotFoundError: If the habit does not exist
        """
        habit = self.get_habit(user_id, habit_id)
        if habit is None:
            logger.warning("Habit not found: %s", habit_id)
            raise NotFoundError("Habit not found")

        # Re-validate the merged habit before writing
        habit_data = habit.model_dump()
        habit_data.update(updates)
        updated = Habit(**habit_data)

        with self._storage_errors("update habit"):
            self._habit_ref(user_id, habit_id).set(updated.model_dump(mode="json"))
        return updated

    def delete_habit(self, user_id: str, habit_id: str) -> None:
        """Delete a habit. Its completion records are left in place.

        Raises:
            NotFoundError: If the habit does not exist
        """
        if self.get_habit(user_id, habit_id) is None:
            raise NotFoundError("Habit not found")

        logger.info("Deleting habit for %s: %s", user_id[:8], habit_id)
        with self._storage_errors("delete habit"):
            self._habit_ref(user_id, habit_id).delete()

    # ==================== Record Queries ====================

    def _stream_records(self, query: Any, action: str) -> list[CompletionRecord]:
        with self._storage_errors(action):
            docs = list(query.stream())
        records = [CompletionRecord(**doc.to_dict()) for doc in docs]
        records.sort(key=lambda r: r.date, reverse=True)
        return records

    def get_records(self, user_id: str) -> list[CompletionRecord]:
        """Fetch all of a user's records, newest day first."""
        records_ref = self._user_ref(user_id).collection("records")
        return self._stream_records(records_ref, "fetch records")

    def get_records_for_habit(self, user_id: str, habit_id: str) -> list[CompletionRecord]:
        """Fetch a habit's records, newest day first."""
        query = self._user_ref(user_id).collection("records").where("habit_id", "==", habit_id)
        return self._stream_records(query, "fetch habit records")

    def get_records_range(
        self, user_id: str, start_date: date, end_date: date
    ) -> list[CompletionRecord]:
        """Fetch records for a date range.

        Args:
            user_id: The user's ID
            start_date: Start of range (inclusive)
            end_date: End of range (inclusive)

        Returns:
            List of records found (may be empty), newest day first
        """
        logger.debug(
            "Fetching records for %s from %s to %s", user_id[:8], start_date, end_date
        )
        start = normalize_record_date(start_date)
        end = normalize_record_date(end_date) + timedelta(days=1)
        query = (
            self._user_ref(user_id)
            .collection("records")
            .where("date", ">=", start)
            .where("date", "<", end)
        )
        return self._stream_records(query, "fetch records range")

    def get_record(self, user_id: str, record_id: str) -> CompletionRecord | None:
        """Fetch one of the user's records by id."""
        with self._storage_errors("fetch record"):
            doc = self._record_ref(user_id, record_id).get()
        if not doc.exists:
            return None
        return CompletionRecord(**doc.to_dict())

    # ==================== Ledger Operations ====================

    def insert_record(self, user_id: str, record: CompletionRecord) -> CompletionRecord:
        """Create a record directly, without the upsert or XP bookkeeping.

        Raises:
            ConflictError: If a record already exists for (habit, day)
        """
        with self._storage_errors("insert record"):
            self._record_ref(user_id, record.id).create(record.model_dump())
        return record

    def submit_completion(
        self, user_id: str, submission: CompletionSubmission
    ) -> tuple[CompletionRecord, LevelInfo]:
        """Create or update the record for (habit, day) and adjust total XP.

        Args:
            user_id: The authenticated caller
            submission: Habit, day, and optional completed flag and notes

        Returns:
            Tuple of (persisted record, refreshed level info)

        Raises:
            NotFoundError: If the user or habit does not exist
            StorageUnavailableError: If Firestore cannot be reached
        """
        user_ref = self._user_ref(user_id)
        habit_ref = self._habit_ref(user_id, submission.habit_id)

        @firestore.transactional
        def apply(transaction: firestore.Transaction) -> tuple[CompletionRecord, int]:
            user_doc = user_ref.get(transaction=transaction)
            if not user_doc.exists:
                raise NotFoundError("User not found")
            habit_doc = habit_ref.get(transaction=transaction)
            if not habit_doc.exists:
                raise NotFoundError("Habit not found")

            user = User(**user_doc.to_dict())
            habit = Habit(**habit_doc.to_dict())

            record_ref = self._record_ref(user_id, record_id(habit.id, submission.date))
            record_doc = record_ref.get(transaction=transaction)
            existing = CompletionRecord(**record_doc.to_dict()) if record_doc.exists else None

            change = resolve_submission(submission, habit, user_id, existing)
            total_xp = apply_xp_delta(user.total_xp, change.xp_delta)

            if existing is None:
                transaction.create(record_ref, change.record.model_dump())
            else:
                transaction.set(record_ref, change.record.model_dump())
            if total_xp != user.total_xp:
                transaction.update(user_ref, {"total_xp": total_xp})

            return change.record, total_xp

        with self._user_lock(user_id), self._storage_errors("submit completion"):
            record, total_xp = apply(self.client.transaction())

        logger.info(
            "Recorded %s for %s on %s (completed=%s, total_xp=%d)",
            submission.habit_id,
            user_id[:8],
            record.date.date(),
            record.completed,
            total_xp,
        )
        return record, level_info(total_xp)

    def retract_completion(self, user_id: str, record_id: str) -> LevelInfo:
        """Delete a record and reverse its XP if it was completed.

        If the record's habit was already deleted no reward is known, so the
        record is removed without touching total XP.

        Args:
            user_id: The authenticated caller
            record_id: ID of the record to delete

        Returns:
            The caller's refreshed level info

        Raises:
            NotFoundError: If the record is unknown or belongs to someone else
            StorageUnavailableError: If Firestore cannot be reached
        """
        user_ref = self._user_ref(user_id)
        record_ref = self._record_ref(user_id, record_id)

        @firestore.transactional
        def apply(transaction: firestore.Transaction) -> int:
            user_doc = user_ref.get(transaction=transaction)
            record_doc = record_ref.get(transaction=transaction)
            if not user_doc.exists or not record_doc.exists:
                raise NotFoundError("Record not found")

            user = User(**user_doc.to_dict())
            record = CompletionRecord(**record_doc.to_dict())

            habit_doc = self._habit_ref(user_id, record.habit_id).get(transaction=transaction)
            habit = Habit(**habit_doc.to_dict()) if habit_doc.exists else None
            if habit is None:
                logger.warning("Habit %s already deleted; skipping XP deduction", record.habit_id)

            total_xp = apply_xp_delta(user.total_xp, retraction_xp_delta(record, habit))

            transaction.delete(record_ref)
            if total_xp != user.total_xp:
                transaction.update(user_ref, {"total_xp": total_xp})
            return total_xp

        with self._user_lock(user_id), self._storage_errors("retract completion"):
            total_xp = apply(self.client.transaction())

        logger.info("Deleted record %s for %s (total_xp=%d)", record_id, user_id[:8], total_xp)
        return level_info(total_xp)
