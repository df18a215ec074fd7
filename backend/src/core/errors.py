"""Domain Errors - Exceptions raised by the ledger and its persistence layer.

The shell translates these into HTTP status codes; core code raises them
without knowing how they will be reported.
"""


class HabitQuestError(Exception):
    """Base class for all HabitQuest errors."""


class NotFoundError(HabitQuestError):
    """A user, habit or record does not exist or is not owned by the caller.

    Unknown ids and ids owned by another user raise the same error so that
    ownership is never leaked.
    """


class ConflictError(HabitQuestError):
    """A uniqueness constraint was violated (duplicate record, email, username)."""


class StorageUnavailableError(HabitQuestError):
    """The document store failed or timed out. Safe for the caller to retry."""
