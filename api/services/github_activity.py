"""
GitHub contribution calendar client.

Fetches the daily contribution counts of one account through the GraphQL
API. Any failure (network, HTTP status, GraphQL error, unknown user,
malformed payload) surfaces as TransientFetchFailure so the sync engine can
count it and move on to the next entity.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Optional, Protocol

import httpx

from api.services.resilience import TransientFetchFailure, is_rate_limited_status
from api.utils.datetime_utils import utc_now
from config.settings import settings

logger = logging.getLogger(__name__)

USER_AGENT = "activity-monitor/1.0"

CONTRIBUTION_QUERY = """
query ($login: String!, $from: DateTime!, $to: DateTime!) {
  user(login: $login) {
    contributionsCollection(from: $from, to: $to) {
      contributionCalendar {
        totalContributions
        weeks {
          contributionDays {
            contributionCount
            date
          }
        }
      }
    }
  }
}
"""


@dataclass(frozen=True)
class ActivityDay:
    """Count of contributions on one UTC date."""
    date: date
    count: int


@dataclass
class ActivityCalendar:
    """Bounded time series of daily counts for one handle, oldest first."""
    handle: str
    total_count: int
    days: list[ActivityDay] = field(default_factory=list)

    def pairs(self) -> list[tuple[date, int]]:
        """(date, count) tuples, the shape the store and classifier consume."""
        return [(d.date, d.count) for d in self.days]


class ActivitySource(Protocol):
    """Anything that can produce a calendar for a handle."""

    def fetch(
        self, handle: str, cancel_event: Optional[threading.Event] = None
    ) -> Optional[ActivityCalendar]:
        ...


def parse_calendar(handle: str, payload: dict) -> ActivityCalendar:
    """
    Turn a GraphQL response body into an ActivityCalendar.

    Raises:
        TransientFetchFailure: On GraphQL errors, unknown users or bad data
    """
    errors = payload.get("errors") or []
    user = (payload.get("data") or {}).get("user")

    # GitHub answers an unknown login with user=null plus a NOT_FOUND error
    if any(isinstance(err, dict) and err.get("type") == "NOT_FOUND" for err in errors):
        raise TransientFetchFailure(handle, "user not found", status_code=404, not_found=True)

    if errors:
        messages = "; ".join(
            str(err.get("message", err)) if isinstance(err, dict) else str(err) for err in errors
        )
        raise TransientFetchFailure(handle, f"GraphQL error: {messages}")

    if not user:
        raise TransientFetchFailure(handle, "user not found", status_code=404, not_found=True)

    calendar = (user.get("contributionsCollection") or {}).get("contributionCalendar")
    if not calendar:
        raise TransientFetchFailure(handle, "no contribution calendar in response")

    days = []
    try:
        for week in calendar.get("weeks", []):
            for day in week.get("contributionDays", []):
                count = int(day["contributionCount"])
                if count < 0:
                    raise ValueError(f"negative count {count} on {day['date']}")
                days.append(ActivityDay(date=date.fromisoformat(day["date"]), count=count))
        total = int(calendar.get("totalContributions", 0))
    except (KeyError, TypeError, ValueError) as e:
        raise TransientFetchFailure(handle, f"malformed calendar: {e}") from e

    days.sort(key=lambda d: d.date)
    return ActivityCalendar(handle=handle, total_count=total, days=days)


def _graphql_datetime(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


class GitHubActivityClient:
    """
    Client for the GitHub GraphQL contribution calendar.

    The request itself is bounded by the HTTP timeout. Cancellation is
    checked before sending and again before the result is handed back, so
    a cancelled run never persists data fetched after the signal fired.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        lookback_days: Optional[int] = None,
        transport: Optional[httpx.BaseTransport] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the GitHub client.

        Args:
            token: Personal access token (default from settings)
            api_url: GraphQL endpoint (default from settings)
            timeout: Request timeout in seconds (default from settings)
            lookback_days: Days of calendar to request (default from settings)
            transport: Optional httpx transport, used by tests
            clock: Returns "now" in UTC; the lookback window ends there
        """
        self.token = token if token is not None else settings.github_token
        self.api_url = api_url or settings.github_api_url
        self.timeout = timeout or settings.github_timeout
        self.lookback_days = lookback_days or settings.activity_lookback_days
        self._clock = clock

        if not self.token:
            logger.warning(
                "GitHub token is not configured. GitHub API calls will fail. "
                "Set GITHUB_TOKEN in the environment or .env"
            )

        headers = {"User-Agent": USER_AGENT}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        self._client = httpx.Client(
            timeout=self.timeout,
            headers=headers,
            transport=transport,
        )

    def fetch(
        self, handle: str, cancel_event: Optional[threading.Event] = None
    ) -> ActivityCalendar:
        """
        Fetch the contribution calendar for a handle.

        Args:
            handle: GitHub login
            cancel_event: Set when the calling run is cancelled

        Returns:
            The calendar covering the configured lookback window

        Raises:
            TransientFetchFailure: If the calendar could not be obtained
        """
        if cancel_event is not None and cancel_event.is_set():
            raise TransientFetchFailure(handle, "cancelled before request")

        end = self._clock()
        start = end - timedelta(days=self.lookback_days)
        body = {
            "query": CONTRIBUTION_QUERY,
            "variables": {
                "login": handle,
                "from": _graphql_datetime(start),
                "to": _graphql_datetime(end),
            },
        }

        try:
            response = self._client.post(self.api_url, json=body)
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as e:
            raise TransientFetchFailure(handle, f"timeout: {e}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if is_rate_limited_status(status):
                logger.warning(f"GitHub rate limit hit while fetching {handle} (HTTP {status})")
            raise TransientFetchFailure(handle, f"HTTP {status}", status_code=status) from e
        except httpx.HTTPError as e:
            raise TransientFetchFailure(handle, f"request failed: {e}") from e
        except ValueError as e:
            raise TransientFetchFailure(handle, f"invalid JSON: {e}") from e

        if cancel_event is not None and cancel_event.is_set():
            raise TransientFetchFailure(handle, "cancelled during request")

        return parse_calendar(handle, payload)

    def close(self) -> None:
        self._client.close()


# Singleton instance
_activity_source: Optional[GitHubActivityClient] = None


def get_activity_source() -> GitHubActivityClient:
    """Get or create the singleton GitHub client."""
    global _activity_source
    if _activity_source is None:
        _activity_source = GitHubActivityClient()
    return _activity_source


def reset_activity_source() -> None:
    """Close and drop the singleton client."""
    global _activity_source
    if _activity_source is not None:
        _activity_source.close()
    _activity_source = None
