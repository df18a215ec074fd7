"""HabitQuest API Server - Entry point.

Serves the REST API for the single-page client and the MCP endpoint for
assistants over HTTP, for Cloud Run deployment.
"""

import logging
import os

import uvicorn
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route, Mount

from .core.errors import ConflictError, StorageUnavailableError
from .shell.mcp_server import mcp, current_user_id, get_auth_client
from .shell.auth import validate_api_key_format, hash_api_key
from .shell.routes import api_routes


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGINS = "https://habitquest.app,http://localhost:5173"


# ==================== Route Handlers ====================


async def health_check(request: Request) -> JSONResponse:
    """Health check endpoint for Cloud Run."""
    return JSONResponse({"status": "healthy", "service": "habitquest-api"})


async def register_user(request: Request) -> JSONResponse:
    """Register a new user and return their API key."""
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse({"error": "Request body must be valid JSON"}, status_code=400)

    email = body.get("email") if isinstance(body, dict) else None
    username = body.get("username") if isinstance(body, dict) else None

    if not email or not isinstance(email, str) or "@" not in email:
        return JSONResponse({"error": "Valid email is required"}, status_code=400)
    if not username or not isinstance(username, str) or not username.strip():
        return JSONResponse({"error": "Username is required"}, status_code=400)

    try:
        auth_client = get_auth_client()
        api_key, user_id = auth_client.register_user(username.strip(), email)
    except ConflictError as e:
        return JSONResponse({"error": str(e)}, status_code=409)
    except StorageUnavailableError:
        return JSONResponse({"error": "Registration failed."}, status_code=503)

    return JSONResponse({
        "api_key": api_key,
        "user_id": user_id,
        "message": "Registration successful! Save your API key - it won't be shown again.",
    }, status_code=201)


async def validate_key(request: Request) -> JSONResponse:
    """Validate an API key."""
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse({"valid": False, "error": "API key required"})

    api_key = body.get("api_key") if isinstance(body, dict) else None
    if not api_key:
        return JSONResponse({"valid": False, "error": "API key required"})

    try:
        user_id = get_auth_client().validate_api_key(api_key)
    except StorageUnavailableError:
        return JSONResponse({"valid": False, "error": "Storage temporarily unavailable"}, status_code=503)
    return JSONResponse({"valid": user_id is not None})


# ==================== Auth Middleware ====================


def resolve_user_id(request: Request) -> str | None:
    """Resolve the Bearer API key on a request to a registered user id.

    Raises:
        StorageUnavailableError: If the user lookup cannot reach Firestore
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None

    api_key = auth_header.replace("Bearer ", "")
    if not validate_api_key_format(api_key):
        return None

    user_id = hash_api_key(api_key)
    if not get_auth_client().user_exists(user_id):
        return None
    return user_id


class AuthMiddleware(BaseHTTPMiddleware):
    """Authenticate REST and MCP requests using API key in Authorization header."""

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if path.startswith("/api/") and request.method != "OPTIONS":
            try:
                user_id = resolve_user_id(request)
            except StorageUnavailableError:
                return JSONResponse({"error": "Storage temporarily unavailable"}, status_code=503)
            if user_id is None:
                return JSONResponse({"error": "Authentication required"}, status_code=401)
            request.state.user_id = user_id
            logger.debug("Authenticated user: %s", user_id[:8])

        elif path.startswith("/mcp"):
            try:
                user_id = resolve_user_id(request)
            except StorageUnavailableError:
                return JSONResponse({"error": "Storage temporarily unavailable"}, status_code=503)
            if user_id is not None:
                # Set user context for this request
                current_user_id.set(user_id)
                logger.debug("Authenticated MCP user: %s", user_id[:8])

        return await call_next(request)


# ==================== Create ASGI App ====================


def create_app() -> Starlette:
    """Create the Starlette application with the REST API and MCP at root.

    The MCP streamable_http_app() handles /mcp/ internally when mounted at root.
    We use its lifespan context to ensure proper initialization.
    """
    mcp_app = mcp.streamable_http_app()

    origins = [
        origin.strip()
        for origin in os.environ.get("CORS_ORIGINS", DEFAULT_CORS_ORIGINS).split(",")
        if origin.strip()
    ]

    # Custom routes first, then MCP app at root
    routes = [
        Route("/health", health_check, methods=["GET"]),
        Route("/auth/register", register_user, methods=["POST"]),
        Route("/auth/validate", validate_key, methods=["POST"]),
        *api_routes,
        # Mount MCP app at root - it handles /mcp/ path internally
        Mount("/", app=mcp_app),
    ]

    app = Starlette(
        routes=routes,
        middleware=[
            Middleware(
                CORSMiddleware,
                allow_origins=origins,
                allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
                allow_headers=["*"],
            ),
            Middleware(AuthMiddleware),
        ],
        lifespan=mcp_app.router.lifespan_context,
    )

    return app


# Create app at module level for Cloud Run
app = create_app()


def main() -> None:
    """Run the server."""
    port = int(os.environ.get("PORT", 8080))
    host = os.environ.get("HOST", "0.0.0.0")

    logger.info("Starting HabitQuest API server on %s:%d", host, port)

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
