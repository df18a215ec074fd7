"""MCP Server - Tool definitions for Claude integration.

Defines the MCP tools an assistant can invoke to track habits.
Handles authentication via API key in Authorization header.
"""

import logging
import os
from contextvars import ContextVar
from datetime import date, datetime, timedelta

from mcp.server.fastmcp import FastMCP
from mcp.server.transport_security import TransportSecuritySettings
from pydantic import ValidationError

from ..core.errors import HabitQuestError
from ..core.leveling import level_info
from ..core.models import CompletionSubmission, Difficulty, Habit
from ..core.presets import list_presets as preset_catalogue
from ..core.presets import reward_for_difficulty
from ..core.reports import generate_weekly_report
from .firestore_client import HabitFirestoreClient, FirestoreConfig
from .auth import AuthClient


logger = logging.getLogger(__name__)

# Context variable to store current user_id per request
current_user_id: ContextVar[str | None] = ContextVar("current_user_id", default=None)

# Configure transport security for Cloud Run deployment
transport_security = TransportSecuritySettings(
    enable_dns_rebinding_protection=True,
    allowed_hosts=[
        "localhost:*",
        "127.0.0.1:*",
        "*.run.app:*",
        "*.run.app",
    ],
)

# Initialize FastMCP server with stateless HTTP for cloud deployments
mcp = FastMCP(
    "habitquest",
    instructions="""HabitQuest - Habit tracker with experience points and levels.

Use these tools to help users build habits: list their habits, mark habits
done for a day, and report on their progress.

Completing a habit awards its XP; un-completing or deleting a completed
record takes it back. After any change, show the user's new level.""",
    stateless_http=True,
    transport_security=transport_security,
)

# Lazy-initialized clients
_firestore_client: HabitFirestoreClient | None = None
_auth_client: AuthClient | None = None


def get_firestore_client() -> HabitFirestoreClient:
    """Get or create Firestore client."""
    global _firestore_client
    if _firestore_client is None:
        config = FirestoreConfig(
            project_id=os.environ.get("GOOGLE_CLOUD_PROJECT"),
            database=os.environ.get("FIRESTORE_DATABASE", "habitquest"),
        )
        _firestore_client = HabitFirestoreClient(config)
    return _firestore_client


def get_auth_client() -> AuthClient:
    """Get or create Auth client."""
    global _auth_client
    if _auth_client is None:
        _auth_client = AuthClient(get_firestore_client().client)
    return _auth_client


def get_user_id() -> str:
    """Get current authenticated user ID.

    Raises:
        RuntimeError: If no user is authenticated
    """
    user_id = current_user_id.get()
    if user_id is None:
        raise RuntimeError("No authenticated user. Ensure API key is provided.")
    return user_id


def _parse_day(date_str: str | None) -> datetime:
    if date_str is None:
        return datetime.utcnow()
    return datetime.combine(date.fromisoformat(date_str), datetime.min.time())


# ==================== Habit Tools ====================


@mcp.tool()
def list_habits() -> list[dict]:
    """List the user's habits with their XP rewards.

    Returns:
        List of habits (id, name, frequency, xp_reward)
    """
    user_id = get_user_id()
    db = get_firestore_client()

    return [
        {
            "id": h.id,
            "name": h.name,
            "description": h.description,
            "frequency": h.frequency.value,
            "xp_reward": h.xp_reward,
        }
        for h in db.list_habits(user_id)
    ]


@mcp.tool()
def list_presets() -> list[dict]:
    """List the built-in preset habits and what each is worth.

    Returns:
        List of presets (name, description, difficulty, xp_reward)
    """
    return preset_catalogue()


@mcp.tool()
def create_habit(
    name: str,
    description: str | None = None,
    difficulty: str | None = None,
    xp_reward: int | None = None,
) -> dict:
    """Create a new habit.

    Args:
        name: Name of the habit (e.g., "Meditate")
        description: Optional details
        difficulty: Optional tier: Easy, Medium, Hard or Epic
        xp_reward: XP per completion; defaults to the difficulty's reward

    Returns:
        The created habit, or an error message
    """
    user_id = get_user_id()
    db = get_firestore_client()

    try:
        tier = Difficulty(difficulty) if difficulty else None
        habit = Habit(
            user_id=user_id,
            name=name,
            description=description,
            difficulty=tier,
            xp_reward=xp_reward if xp_reward is not None else reward_for_difficulty(tier),
        )
    except (ValueError, ValidationError) as e:
        return {"error": f"Invalid habit: {e}"}

    try:
        db.create_habit(habit)
    except HabitQuestError as e:
        return {"error": str(e)}

    return {"id": habit.id, "name": habit.name, "xp_reward": habit.xp_reward}


# ==================== Ledger Tools ====================


def _submit(habit_id: str, date_str: str | None, completed: bool, notes: str | None) -> dict:
    user_id = get_user_id()
    db = get_firestore_client()

    payload: dict = {"habit_id": habit_id, "completed": completed}
    if notes is not None:
        payload["notes"] = notes

    try:
        payload["date"] = _parse_day(date_str)
        submission = CompletionSubmission(**payload)
        record, info = db.submit_completion(user_id, submission)
    except (ValueError, ValidationError) as e:
        return {"error": f"Invalid request: {e}"}
    except HabitQuestError as e:
        return {"error": str(e)}

    return {
        "record": {
            "id": record.id,
            "habit_id": record.habit_id,
            "date": record.date.date().isoformat(),
            "completed": record.completed,
            "notes": record.notes,
        },
        "level": info.model_dump(),
    }


@mcp.tool()
def complete_habit(habit_id: str, date_str: str | None = None, notes: str | None = None) -> dict:
    """Mark a habit as done for a day and award its XP.

    Completing the same habit twice on the same day awards XP only once.

    Args:
        habit_id: The habit's ID
        date_str: Day in YYYY-MM-DD format (defaults to today, UTC)
        notes: Optional notes for the day

    Returns:
        The record and the user's updated level
    """
    return _submit(habit_id, date_str, True, notes)


@mcp.tool()
def uncomplete_habit(habit_id: str, date_str: str | None = None) -> dict:
    """Mark a habit as not done for a day, taking back its XP if it was done.

    Args:
        habit_id: The habit's ID
        date_str: Day in YYYY-MM-DD format (defaults to today, UTC)

    Returns:
        The record and the user's updated level
    """
    return _submit(habit_id, date_str, False, None)


@mcp.tool()
def delete_record(record_id: str) -> dict:
    """Delete a completion record, taking back its XP if it was completed.

    Args:
        record_id: The record's ID

    Returns:
        Confirmation and the user's updated level
    """
    user_id = get_user_id()
    db = get_firestore_client()

    try:
        info = db.retract_completion(user_id, record_id)
    except HabitQuestError as e:
        return {"error": str(e)}

    return {"success": True, "level": info.model_dump()}


# ==================== Query Tools ====================


@mcp.tool()
def get_level() -> dict:
    """Get the user's level, progress and total XP.

    Returns:
        Dictionary with level, xp, xp_to_next_level and total_xp
    """
    user_id = get_user_id()
    db = get_firestore_client()

    try:
        user = db.get_user(user_id)
    except HabitQuestError as e:
        return {"error": str(e)}
    if user is None:
        return {"error": "User not found"}

    info = level_info(user.total_xp)
    return {**info.model_dump(), "total_xp": user.total_xp}


@mcp.tool()
def get_weekly_report() -> dict:
    """Generate a report of the last 7 days of habit completions.

    Returns:
        Dictionary with daily completions, per-habit counts, XP earned
        and completion rate
    """
    user_id = get_user_id()
    db = get_firestore_client()

    end_date = datetime.utcnow().date()
    start_date = end_date - timedelta(days=6)

    try:
        habits = db.list_habits(user_id)
        records = db.get_records_range(user_id, start_date, end_date)
    except HabitQuestError as e:
        return {"error": str(e)}

    report = generate_weekly_report(records, habits, start_date)
    return report.model_dump(mode="json")
