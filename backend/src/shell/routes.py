"""REST Routes - JSON endpoints for the single-page client.

Each handler reads the authenticated user id resolved by the auth
middleware and passes it explicitly to the Firestore client.
"""

import json
import logging
from datetime import date, datetime, timedelta

from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from ..core.errors import ConflictError, HabitQuestError, NotFoundError, StorageUnavailableError
from ..core.leveling import level_info
from ..core.models import CompletionSubmission, Difficulty, Habit
from ..core.presets import list_presets, reward_for_difficulty
from ..core.reports import generate_weekly_report
from .mcp_server import get_firestore_client


logger = logging.getLogger(__name__)

# Fields a client may change with PUT /api/habits/{id}
HABIT_UPDATABLE_FIELDS = ("name", "description", "frequency", "color", "difficulty", "xp_reward")


def error_response(error: Exception) -> JSONResponse:
    """Map a domain or validation error to a JSON error response."""
    if isinstance(error, (ValidationError, ValueError)):
        return JSONResponse({"error": str(error)}, status_code=400)
    if isinstance(error, NotFoundError):
        return JSONResponse({"error": str(error)}, status_code=404)
    if isinstance(error, ConflictError):
        return JSONResponse({"error": str(error)}, status_code=409)
    if isinstance(error, StorageUnavailableError):
        return JSONResponse({"error": "Storage temporarily unavailable"}, status_code=503)
    logger.error("Unhandled error: %s", str(error))
    return JSONResponse({"error": "Internal error"}, status_code=500)


async def read_json_object(request: Request) -> dict:
    """Parse the request body as a JSON object.

    Raises:
        ValueError: If the body is not a JSON object
    """
    try:
        body = await request.json()
    except json.JSONDecodeError as e:
        raise ValueError("Request body must be valid JSON") from e
    if not isinstance(body, dict):
        raise ValueError("Request body must be a JSON object")
    return body


def habit_json(habit: Habit) -> dict:
    return habit.model_dump(mode="json")


# ==================== User Handlers ====================


async def get_me(request: Request) -> JSONResponse:
    """Current user's profile with derived level information."""
    user_id = request.state.user_id
    try:
        user = await run_in_threadpool(get_firestore_client().get_user, user_id)
    except HabitQuestError as e:
        return error_response(e)
    if user is None:
        return error_response(NotFoundError("User not found"))

    info = level_info(user.total_xp)
    return JSONResponse({
        "id": user_id,
        "username": user.username,
        "email": user.email,
        "total_xp": user.total_xp,
        **info.model_dump(),
    })


async def update_me(request: Request) -> JSONResponse:
    """Update the current user's username."""
    user_id = request.state.user_id
    try:
        body = await read_json_object(request)
        username = body.get("username")
        if not isinstance(username, str) or not username.strip():
            raise ValueError("username is required")
        user = await run_in_threadpool(
            get_firestore_client().update_username, user_id, username.strip()
        )
    except (ValueError, HabitQuestError) as e:
        return error_response(e)

    return JSONResponse({
        "id": user_id,
        "username": user.username,
        "email": user.email,
        "total_xp": user.total_xp,
        **level_info(user.total_xp).model_dump(),
    })


# ==================== Habit Handlers ====================


async def list_habits(request: Request) -> JSONResponse:
    try:
        habits = await run_in_threadpool(get_firestore_client().list_habits, request.state.user_id)
    except HabitQuestError as e:
        return error_response(e)
    return JSONResponse([habit_json(h) for h in habits])


async def get_presets(request: Request) -> JSONResponse:
    """Preset habit catalogue."""
    return JSONResponse(list_presets())


async def create_habit(request: Request) -> JSONResponse:
    """Create a habit; a difficulty fills in xp_reward when it is not given."""
    user_id = request.state.user_id
    try:
        body = await read_json_object(request)
        fields = {k: body[k] for k in HABIT_UPDATABLE_FIELDS if k in body}
        if "xp_reward" not in fields and fields.get("difficulty"):
            fields["xp_reward"] = reward_for_difficulty(Difficulty(fields["difficulty"]))
        habit = Habit(user_id=user_id, **fields)
        await run_in_threadpool(get_firestore_client().create_habit, habit)
    except (ValueError, HabitQuestError) as e:
        return error_response(e)
    return JSONResponse(habit_json(habit), status_code=201)


async def get_habit(request: Request) -> JSONResponse:
    habit_id = request.path_params["habit_id"]
    try:
        habit = await run_in_threadpool(
            get_firestore_client().get_habit, request.state.user_id, habit_id
        )
    except HabitQuestError as e:
        return error_response(e)
    if habit is None:
        return error_response(NotFoundError("Habit not found"))
    return JSONResponse(habit_json(habit))


async def update_habit(request: Request) -> JSONResponse:
    """Apply a partial update; fields left out keep their value."""
    habit_id = request.path_params["habit_id"]
    try:
        body = await read_json_object(request)
        updates = {k: body[k] for k in HABIT_UPDATABLE_FIELDS if k in body}
        habit = await run_in_threadpool(
            get_firestore_client().update_habit, request.state.user_id, habit_id, updates
        )
    except (ValueError, HabitQuestError) as e:
        return error_response(e)
    return JSONResponse(habit_json(habit))


async def delete_habit(request: Request) -> JSONResponse:
    habit_id = request.path_params["habit_id"]
    try:
        await run_in_threadpool(
            get_firestore_client().delete_habit, request.state.user_id, habit_id
        )
    except HabitQuestError as e:
        return error_response(e)
    return JSONResponse({"message": "Habit deleted"})


# ==================== Record Handlers ====================


async def list_records(request: Request) -> JSONResponse:
    try:
        records = await run_in_threadpool(get_firestore_client().get_records, request.state.user_id)
    except HabitQuestError as e:
        return error_response(e)
    return JSONResponse([r.model_dump(mode="json") for r in records])


async def list_habit_records(request: Request) -> JSONResponse:
    habit_id = request.path_params["habit_id"]
    try:
        records = await run_in_threadpool(
            get_firestore_client().get_records_for_habit, request.state.user_id, habit_id
        )
    except HabitQuestError as e:
        return error_response(e)
    return JSONResponse([r.model_dump(mode="json") for r in records])


async def list_records_range(request: Request) -> JSONResponse:
    """Records between startDate and endDate (YYYY-MM-DD, inclusive)."""
    try:
        start_date = date.fromisoformat(request.query_params.get("startDate", ""))
        end_date = date.fromisoformat(request.query_params.get("endDate", ""))
        if end_date < start_date:
            raise ValueError("endDate must not be before startDate")
        records = await run_in_threadpool(
            get_firestore_client().get_records_range,
            request.state.user_id,
            start_date,
            end_date,
        )
    except (ValueError, HabitQuestError) as e:
        return error_response(e)
    return JSONResponse([r.model_dump(mode="json") for r in records])


async def submit_record(request: Request) -> JSONResponse:
    """Mark a habit done (or not done) for a day."""
    user_id = request.state.user_id
    try:
        body = await read_json_object(request)
        submission = CompletionSubmission(**body)
        record, info = await run_in_threadpool(
            get_firestore_client().submit_completion, user_id, submission
        )
    except (ValueError, HabitQuestError) as e:
        return error_response(e)

    return JSONResponse(
        {"record": record.model_dump(mode="json"), "level_info": info.model_dump()},
        status_code=201,
    )


async def delete_record(request: Request) -> JSONResponse:
    record_id = request.path_params["record_id"]
    try:
        info = await run_in_threadpool(
            get_firestore_client().retract_completion, request.state.user_id, record_id
        )
    except HabitQuestError as e:
        return error_response(e)
    return JSONResponse({"message": "Record deleted", "level_info": info.model_dump()})


# ==================== Report Handlers ====================


async def weekly_report(request: Request) -> JSONResponse:
    """Weekly completion report starting at weekStart (defaults to 6 days ago, UTC)."""
    user_id = request.state.user_id
    db = get_firestore_client()
    try:
        week_start_param = request.query_params.get("weekStart")
        week_start = date.fromisoformat(week_start_param) if week_start_param else None
        report_start = week_start or (datetime.utcnow().date() - timedelta(days=6))
        habits = await run_in_threadpool(db.list_habits, user_id)
        records = await run_in_threadpool(
            db.get_records_range, user_id, report_start, report_start + timedelta(days=6)
        )
    except (ValueError, HabitQuestError) as e:
        return error_response(e)

    report = generate_weekly_report(records, habits, report_start)
    return JSONResponse(report.model_dump(mode="json"))


api_routes = [
    Route("/api/users/me", get_me, methods=["GET"]),
    Route("/api/users/me", update_me, methods=["PUT"]),
    Route("/api/habits", list_habits, methods=["GET"]),
    Route("/api/habits", create_habit, methods=["POST"]),
    Route("/api/habits/presets", get_presets, methods=["GET"]),
    Route("/api/habits/{habit_id}", get_habit, methods=["GET"]),
    Route("/api/habits/{habit_id}", update_habit, methods=["PUT"]),
    Route("/api/habits/{habit_id}", delete_habit, methods=["DELETE"]),
    Route("/api/records", list_records, methods=["GET"]),
    Route("/api/records", submit_record, methods=["POST"]),
    Route("/api/records/range", list_records_range, methods=["GET"]),
    Route("/api/records/habit/{habit_id}", list_habit_records, methods=["GET"]),
    Route("/api/records/{record_id}", delete_record, methods=["DELETE"]),
    Route("/api/reports/weekly", weekly_report, methods=["GET"]),
]
