"""
Calendar access for individual users.
Resolves a user's live credential, talks to Google Calendar on their behalf
and translates failures into the scheduler's error taxonomy:
AccessUnavailable when a calendar can't be read at all, CalendarTransportError
for network/auth failures on an otherwise connected calendar.
"""

from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Protocol, TypeVar

from hangout_scheduler.config import settings
from hangout_scheduler.exceptions import AccessUnavailable, CalendarTransportError
from hangout_scheduler.infrastructure.observability.logging import get_logger
from hangout_scheduler.models.domain.calendar_domain import BusyInterval, CalendarCredential
from hangout_scheduler.services.calendar.google_client import (
    GoogleCalendarError,
    GoogleCalendarService,
)

logger = get_logger(__name__)

T = TypeVar("T")


class CalendarAccessProvider(Protocol):
    """Per-user calendar capability consumed by the scheduler."""

    async def has_access(self, user_id: str) -> bool: ...

    async def get_busy_intervals(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[BusyInterval]: ...

    async def create_event(
        self,
        user_id: str,
        title: str,
        description: str,
        start: datetime,
        end: datetime,
        location: str | None = None,
    ) -> str: ...

    async def delete_event(self, user_id: str, event_id: str) -> None: ...


class TokenSource(Protocol):
    """Owner of OAuth credentials; refresh mechanics live behind it."""

    async def get_credential(self, user_id: str) -> CalendarCredential | None: ...

    async def refresh_credential(self, user_id: str) -> CalendarCredential | None: ...


class InMemoryTokenSource:
    """
    Credential store kept in process memory.

    ``refresher`` is called at most once per refresh request; returning None
    means the credential could not be renewed.
    """

    def __init__(
        self,
        refresher: Callable[[CalendarCredential], Awaitable[CalendarCredential | None]]
        | None = None,
    ):
        self._credentials: dict[str, CalendarCredential] = {}
        self._refresher = refresher

    def store(self, credential: CalendarCredential) -> None:
        self._credentials[credential.user_id] = credential

    def revoke(self, user_id: str) -> None:
        self._credentials.pop(user_id, None)

    async def get_credential(self, user_id: str) -> CalendarCredential | None:
        return self._credentials.get(user_id)

    async def refresh_credential(self, user_id: str) -> CalendarCredential | None:
        current = self._credentials.get(user_id)
        if current is None or self._refresher is None:
            return None

        refreshed = await self._refresher(current)
        if refreshed is not None:
            self._credentials[user_id] = refreshed
        return refreshed


class GoogleCalendarAccessProvider:
    """
    CalendarAccessProvider backed by the Google Calendar API.

    A 401 triggers exactly one credential refresh and one retry. A second
    failure is reported, never retried again.
    """

    def __init__(
        self,
        token_source: TokenSource,
        client: GoogleCalendarService | None = None,
        event_timezone: str | None = None,
    ):
        self.token_source = token_source
        self.client = client or GoogleCalendarService()
        self.event_timezone = event_timezone or settings.SCHEDULING_TIMEZONE

    async def close(self) -> None:
        await self.client.close()

    async def has_access(self, user_id: str) -> bool:
        credential = await self.token_source.get_credential(user_id)
        return credential is not None and bool(credential.access_token)

    async def get_busy_intervals(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[BusyInterval]:
        """
        Busy intervals on the user's primary calendar.

        Raises:
            AccessUnavailable: No credential, or the calendar refused access
            CalendarTransportError: Network or API failure
        """

        async def _query(access_token: str) -> list[BusyInterval]:
            return await self.client.query_free_busy(access_token, start, end)

        return await self._call_with_refresh(user_id, "get_busy_intervals", _query)

    async def create_event(
        self,
        user_id: str,
        title: str,
        description: str,
        start: datetime,
        end: datetime,
        location: str | None = None,
    ) -> str:
        async def _create(access_token: str) -> str:
            return await self.client.create_event(
                access_token,
                summary=title,
                start_time=start,
                end_time=end,
                description=description,
                location=location,
                timezone_str=self.event_timezone,
            )

        return await self._call_with_refresh(user_id, "create_event", _create)

    async def delete_event(self, user_id: str, event_id: str) -> None:
        async def _delete(access_token: str) -> bool:
            return await self.client.delete_event(access_token, event_id)

        await self._call_with_refresh(user_id, "delete_event", _delete)

    async def _resolve_credential(self, user_id: str) -> CalendarCredential:
        credential = await self.token_source.get_credential(user_id)
        if credential is None or not credential.access_token:
            raise AccessUnavailable("No calendar credential for user", user_id=user_id)

        if credential.needs_refresh(settings.TOKEN_REFRESH_BUFFER_MINUTES):
            logger.debug("Calendar credential near expiry, refreshing", user_id=user_id)
            refreshed = await self.token_source.refresh_credential(user_id)
            if refreshed is not None:
                return refreshed
            if credential.is_expired():
                raise AccessUnavailable("Calendar credential expired", user_id=user_id)

        return credential

    async def _call_with_refresh(
        self,
        user_id: str,
        operation: str,
        call: Callable[[str], Awaitable[T]],
    ) -> T:
        credential = await self._resolve_credential(user_id)

        try:
            return await call(credential.access_token)
        except GoogleCalendarError as e:
            if not e.is_auth_error:
                raise self._translate(e, user_id) from e
            logger.info(
                "Calendar credential rejected, refreshing once",
                user_id=user_id,
                operation=operation,
            )

        refreshed = await self.token_source.refresh_credential(user_id)
        if refreshed is None:
            raise AccessUnavailable("Calendar credential could not be refreshed", user_id=user_id)

        try:
            return await call(refreshed.access_token)
        except GoogleCalendarError as e:
            logger.warning(
                "Calendar call failed after credential refresh",
                user_id=user_id,
                operation=operation,
                status_code=e.status_code,
            )
            raise self._translate(e, user_id) from e

    @staticmethod
    def _translate(error: GoogleCalendarError, user_id: str) -> Exception:
        # A refused calendar is as unreadable as a missing one
        if error.is_permission_error:
            return AccessUnavailable(str(error), user_id=user_id)
        return CalendarTransportError(str(error), user_id=user_id, status_code=error.status_code)
