"""Authentication - API key generation and validation.

Handles API key creation, hashing, and validation. Never stores plaintext keys.
"""

import hashlib
import logging
import secrets
from datetime import datetime

from google.api_core import exceptions as gcloud_exceptions
from google.cloud import firestore

from ..core.errors import ConflictError, StorageUnavailableError
from ..core.models import User


logger = logging.getLogger(__name__)

# API key prefix for identification
API_KEY_PREFIX = "hq_"


def generate_api_key() -> str:
    """Generate a cryptographically secure API key.

    Returns:
        API key in format: hq_<random_chars>
    """
    random_part = secrets.token_urlsafe(32)
    return f"{API_KEY_PREFIX}{random_part}"


def hash_api_key(api_key: str) -> str:
    """Hash an API key to create a user_id.

    Uses SHA256 and truncates to 32 chars for Firestore document ID.

    Args:
        api_key: The plaintext API key

    Returns:
        32-character hash to use as user_id
    """
    return hashlib.sha256(api_key.encode()).hexdigest()[:32]


def validate_api_key_format(api_key: str) -> bool:
    """Check if API key has valid format.

    Args:
        api_key: The API key to validate

    Returns:
        True if format is valid
    """
    if not api_key:
        return False
    if not api_key.startswith(API_KEY_PREFIX):
        return False
    if len(api_key) < 40:  # prefix + at least some random chars
        return False
    return True


class AuthClient:
    """Client for API key authentication operations.

    Handles user registration and API key validation against Firestore.
    Email addresses and usernames are claimed through index documents
    (`user_emails/{hash}`, `usernames/{hash}`) written in the same batch
    as the user, so two registrations can never both take one value.
    """

    def __init__(self, db: firestore.Client) -> None:
        """Initialize auth client.

        Args:
            db: Firestore client instance
        """
        self._db = db

    def _get_user_ref(self, user_id: str) -> firestore.DocumentReference:
        """Get reference to user document."""
        return self._db.collection("users").document(user_id)

    def _claim_ref(self, collection: str, value: str) -> firestore.DocumentReference:
        """Index document reserving a unique value; ids are hashed to stay path-safe."""
        return self._db.collection(collection).document(hashlib.sha256(value.encode()).hexdigest())

    def _field_taken(self, field: str, value: str) -> bool:
        query = self._db.collection("users").where(field, "==", value).limit(1)
        return any(True for _ in query.stream())

    def register_user(self, username: str, email: str) -> tuple[str, str]:
        """Register a new user and generate their API key.

        Args:
            username: Display name, unique across users
            email: User's email address, unique across users

        Returns:
            Tuple of (api_key, user_id) - api_key is only returned once!

        Raises:
            ConflictError: If the email or username is already registered
            StorageUnavailableError: If Firestore cannot be reached
        """
        logger.info("Registering new user: %s", email)

        try:
            if self._field_taken("email", email):
                raise ConflictError("Email already registered")
            if self._field_taken("username", username):
                raise ConflictError("Username already taken")

            api_key = generate_api_key()
            user_id = hash_api_key(api_key)

            user = User(
                username=username,
                email=email,
                api_key_hash=user_id,
                total_xp=0,
                created_at=datetime.utcnow(),
            )

            # create() fails if any document exists; the batch commits all or nothing
            batch = self._db.batch()
            batch.create(self._claim_ref("user_emails", email), {"user_id": user_id})
            batch.create(self._claim_ref("usernames", username), {"user_id": user_id})
            batch.create(self._get_user_ref(user_id), user.model_dump())
            batch.commit()
        except gcloud_exceptions.AlreadyExists as e:
            logger.warning("Concurrent registration lost for: %s", email)
            raise ConflictError("Email or username already registered") from e
        except gcloud_exceptions.GoogleAPICallError as e:
            logger.error("Failed to register user: %s", str(e))
            raise StorageUnavailableError("Registration failed") from e

        logger.info("User registered successfully: %s", user_id[:8])
        return api_key, user_id

    def validate_api_key(self, api_key: str) -> str | None:
        """Validate an API key and return the user_id if valid.

        Args:
            api_key: The API key to validate

        Returns:
            user_id if valid, None if invalid

        Raises:
            StorageUnavailableError: If Firestore cannot be reached
        """
        if not validate_api_key_format(api_key):
            logger.warning("Invalid API key format")
            return None

        user_id = hash_api_key(api_key)

        if self.user_exists(user_id):
            logger.debug("API key validated for user: %s", user_id[:8])
            return user_id
        logger.warning("API key not found in database")
        return None

    def user_exists(self, user_id: str) -> bool:
        """Check if a user exists.

        Args:
            user_id: The user's ID

        Returns:
            True if user exists

        Raises:
            StorageUnavailableError: If Firestore cannot be reached
        """
        try:
            return self._get_user_ref(user_id).get().exists
        except gcloud_exceptions.GoogleAPICallError as e:
            logger.error("Error checking user: %s", str(e))
            raise StorageUnavailableError("User lookup failed") from e
