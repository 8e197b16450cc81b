"""Calendar service - Google Calendar free/busy access for the availability resolver.

Handles:
- Freebusy queries for a connected party
- OAuth token refresh when the stored access token has expired

HTTP calls are async (httpx); the resolver drives them through run_async with a
bounded timeout. Every failure surfaces as CalendarFetchError so the caller can
degrade to internal call records.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TypedDict

import httpx
from sqlalchemy.orm import Session

from callgate.core.async_utils import run_async
from callgate.core.config import settings
from callgate.core.errors import TransientDependencyError
from callgate.core.structured_logging import build_log_context
from callgate.db.models import User, UserIntegration

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_FREEBUSY_URL = "https://www.googleapis.com/calendar/v3/freeBusy"


class CalendarFetchError(TransientDependencyError):
    """External calendar could not be read."""

    pass


# =============================================================================
# Types
# =============================================================================

class BusyBlock(TypedDict):
    """A blocked time period from Google Calendar."""
    start: datetime
    end: datetime


def _parse_google_datetime(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


# =============================================================================
# Token Management
# =============================================================================

async def _refresh_google_token(refresh_token: str) -> dict:
    """Exchange a refresh token for a new access token."""
    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": settings.GOOGLE_CLIENT_ID,
                    "client_secret": settings.GOOGLE_CLIENT_SECRET,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
    except httpx.HTTPError as exc:
        raise CalendarFetchError(f"Token refresh failed: {exc}") from exc

    if response.status_code != 200:
        raise CalendarFetchError(f"Token refresh returned {response.status_code}")
    try:
        payload = response.json()
        access_token = payload["access_token"]
        expires_in = int(payload.get("expires_in", 3600))
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        raise CalendarFetchError(f"Malformed token refresh response: {exc!r}") from exc
    if not access_token:
        raise CalendarFetchError("Token refresh response missing access_token")
    return {"access_token": access_token, "expires_in": expires_in}


def get_access_token(
    db: Session,
    integration: UserIntegration,
    now: datetime | None = None,
) -> str:
    """
    Return a usable access token, refreshing (and persisting) it when expired.

    Raises CalendarFetchError if the token is expired and cannot be refreshed.
    """
    now = now or datetime.now(timezone.utc)
    if not integration.access_token_encrypted:
        raise CalendarFetchError("Calendar integration has no access token")

    if integration.token_expires_at is None or integration.token_expires_at > now:
        return integration.access_token_encrypted

    if not integration.refresh_token_encrypted:
        raise CalendarFetchError("Access token expired and no refresh token stored")

    payload = run_async(
        _refresh_google_token(integration.refresh_token_encrypted),
        timeout=settings.CALENDAR_FETCH_TIMEOUT_SECONDS,
    )
    integration.access_token_encrypted = payload["access_token"]
    integration.token_expires_at = now + timedelta(seconds=payload["expires_in"])
    db.commit()
    logger.info(
        "Calendar access token refreshed",
        extra=build_log_context(user_id=str(integration.user_id)),
    )
    return payload["access_token"]


# =============================================================================
# Freebusy Queries
# =============================================================================

async def get_google_busy_slots(
    access_token: str,
    calendar_id: str,
    time_min: datetime,
    time_max: datetime,
) -> list[BusyBlock]:
    """
    Get busy time slots from Google Calendar via the freebusy API.

    Raises CalendarFetchError on transport errors, non-200 responses or a
    calendar-level error in the payload.
    """
    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                GOOGLE_FREEBUSY_URL,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Content-Type": "application/json",
                },
                json={
                    "timeMin": time_min.isoformat(),
                    "timeMax": time_max.isoformat(),
                    "items": [{"id": calendar_id}],
                },
            )
    except httpx.HTTPError as exc:
        raise CalendarFetchError(f"Freebusy request failed: {exc}") from exc

    if response.status_code != 200:
        raise CalendarFetchError(f"Freebusy returned {response.status_code}")

    try:
        calendar_data = response.json().get("calendars", {}).get(calendar_id, {})
        if calendar_data.get("errors"):
            raise CalendarFetchError(f"Freebusy calendar error: {calendar_data['errors']}")
        return [
            BusyBlock(
                start=_parse_google_datetime(b["start"]),
                end=_parse_google_datetime(b["end"]),
            )
            for b in calendar_data.get("busy", [])
        ]
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        raise CalendarFetchError(f"Malformed freebusy response: {exc!r}") from exc


def fetch_busy_blocks(
    db: Session,
    user: User,
    time_min: datetime,
    time_max: datetime,
) -> list[BusyBlock]:
    """
    Busy periods from the user's connected calendar.

    Returns [] for users without a connected calendar. Raises
    CalendarFetchError (or TimeoutError) when the fetch itself fails.
    """
    if not user.has_connected_calendar:
        return []
    integration = user.calendar_integration
    access_token = get_access_token(db, integration)
    return run_async(
        get_google_busy_slots(access_token, integration.calendar_id, time_min, time_max),
        timeout=settings.CALENDAR_FETCH_TIMEOUT_SECONDS,
    )
