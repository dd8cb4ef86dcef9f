"""
Experience points for user contributions
Awards are fire-and-forget from the reviewer's point of view: callers log
failures and move on.
"""
import logging
from typing import Optional, Dict, Any

import requests
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from . import config

logger = logging.getLogger(__name__)

XP_VALUES: Dict[str, int] = {
    "review": 10,
    "add_location": 20,
    "photo": 5,
    "post": 5,
}


# =========================
# Custom Exceptions
# =========================
class ExperienceServiceError(Exception):
    """Raised when an award cannot be recorded"""
    pass


class TransientServiceError(ExperienceServiceError):
    """Raised on timeouts and 5xx/429 responses (will retry)"""
    pass


def points_for(action_kind: str) -> int:
    """Points awarded for an action kind"""
    try:
        return XP_VALUES[action_kind]
    except KeyError:
        raise ValueError(f"Unknown action kind: {action_kind}") from None


# =========================
# Local (DuckDB) Service
# =========================
class ExperienceService:
    """Records awards in the experience_events table"""

    def __init__(self, db_manager):
        """
        Args:
            db_manager: DatabaseManager instance (schema initialized)
        """
        self.db = db_manager

    def award(self, user_id: str, action_kind: str) -> int:
        """Record one award, returns the points granted"""
        if not user_id:
            raise ValueError("user_id is required")
        points = points_for(action_kind)

        with self.db.transaction() as cursor:
            cursor.execute(
                "INSERT INTO experience_events (user_id, action_kind, points) VALUES (?, ?, ?)",
                [user_id, action_kind, points],
            )

        logger.debug(f"Awarded {points} XP to {user_id} for '{action_kind}'")
        return points

    def total_xp(self, user_id: str) -> int:
        row = self.db.connection.execute(
            "SELECT COALESCE(SUM(points), 0) FROM experience_events WHERE user_id = ?",
            [user_id],
        ).fetchone()
        return int(row[0])

    def history(self, user_id: str):
        """Award history as DataFrame, newest first"""
        return self.db.connection.execute(
            """
            SELECT action_kind, points, created_at
            FROM experience_events
            WHERE user_id = ?
            ORDER BY created_at DESC
            """,
            [user_id],
        ).fetchdf()


# =========================
# Remote Service Client
# =========================
class HttpExperienceClient:
    """
    Client for a hosted experience-points service with automatic retry
    """

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        """
        Args:
            url: Award endpoint (uses config if None)
            api_key: Bearer token (uses config if None)
            timeout: Request timeout in seconds
        """
        self.url = url or config.XP_SERVICE_CONFIG["url"]
        self.api_key = api_key or config.XP_SERVICE_CONFIG["api_key"]
        self.timeout = timeout or config.XP_SERVICE_CONFIG["timeout"]

        if not self.url:
            raise ExperienceServiceError("XP service URL is required")

    @retry(
        reraise=True,
        stop=stop_after_attempt(config.XP_SERVICE_CONFIG["max_retries"]),
        wait=wait_exponential(
            multiplier=1,
            min=config.XP_SERVICE_CONFIG["retry_min_wait"],
            max=config.XP_SERVICE_CONFIG["retry_max_wait"]
        ),
        retry=retry_if_exception_type(TransientServiceError),
    )
    def award(self, user_id: str, action_kind: str) -> int:
        """
        Post one award

        Returns:
            Points granted (as reported by the service, else points_for(action_kind))

        Raises:
            TransientServiceError: Timeouts, 429 and 5xx (retried)
            ExperienceServiceError: Other failures
        """
        points = points_for(action_kind)
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = requests.post(
                self.url,
                json={"userId": user_id, "action": action_kind, "points": points},
                headers=headers,
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            logger.warning(f"XP service unreachable, will retry: {e}")
            raise TransientServiceError(str(e)) from e

        if response.status_code == 429 or response.status_code >= 500:
            logger.warning(f"XP service returned {response.status_code}, will retry...")
            raise TransientServiceError(f"{response.status_code}: {response.text}")
        if response.status_code >= 400:
            raise ExperienceServiceError(f"{response.status_code}: {response.text}")

        try:
            data: Dict[str, Any] = response.json()
        except ValueError:
            data = {}
        return int(data.get("points", points))


def get_experience_service(db_manager=None):
    """HTTP client when XP_SERVICE_URL is configured, else the local service"""
    if config.XP_SERVICE_CONFIG["url"]:
        return HttpExperienceClient()
    if db_manager is None:
        raise ExperienceServiceError("A DatabaseManager is required for local XP awards")
    return ExperienceService(db_manager)
