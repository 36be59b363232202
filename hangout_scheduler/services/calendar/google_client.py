"""
HTTP client for the slice of the Google Calendar v3 REST API the scheduler
needs: freeBusy lookups plus inserting and removing hangout events.
Callers pass a ready access token; credential refresh is the access
provider's concern.
"""

import asyncio
from datetime import datetime
from typing import Any

import httpx

from hangout_scheduler.config import settings
from hangout_scheduler.infrastructure.observability.logging import get_logger
from hangout_scheduler.models.domain.calendar_domain import BusyInterval

logger = get_logger(__name__)

CALENDAR_PRIMARY = "primary"
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}
# HEAD on the API root answers with one of these when Google is reachable
REACHABLE_STATUS_CODES = {200, 401, 403, 404}

ERROR_MESSAGES = {
    "400": "Calendar rejected the request as malformed.",
    "401": "Calendar authorization expired. Please reconnect.",
    "403": "Calendar access denied for this user.",
    "404": "Calendar or hangout event not found.",
    "410": "Hangout event already removed from the calendar.",
    "429": "Calendar rate limit hit, try again shortly.",
    "500": "Google Calendar is temporarily unavailable.",
}


class GoogleCalendarError(Exception):
    """Failed Calendar API call, with the HTTP status when there was one."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code
        self.response_data = response_data or {}

    @property
    def is_auth_error(self) -> bool:
        return self.status_code == 401

    @property
    def is_permission_error(self) -> bool:
        return self.status_code == 403


class GoogleCalendarService:
    """
    Talks to one user's primary calendar at a time.

    Rate-limited and 5xx responses, as well as connection failures, are
    retried with exponential backoff up to ``max_retries`` attempts.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_factor: float | None = None,
    ):
        config = settings.get_calendar_client_config()
        self.base_url = (base_url or config["base_url"]).rstrip("/")
        self.timeout = timeout if timeout is not None else config["timeout"]
        self.max_retries = max_retries if max_retries is not None else config["max_retries"]
        self.backoff_factor = (
            backoff_factor if backoff_factor is not None else config["backoff_factor"]
        )
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=50),
        )

    async def close(self) -> None:
        await self._client.aclose()

    def _backoff(self, attempt: int) -> float:
        return self.backoff_factor * (2 ** (attempt - 1))

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        last_attempt = self.max_retries
        for attempt in range(1, last_attempt + 1):
            try:
                response = await self._client.request(method, url, **kwargs)
            except httpx.RequestError as e:
                if attempt >= last_attempt:
                    raise
                delay = self._backoff(attempt)
                logger.debug(
                    "Calendar connection failed, backing off",
                    attempt=attempt,
                    error=str(e),
                    backoff_seconds=delay,
                )
                await asyncio.sleep(delay)
                continue

            if response.status_code not in RETRY_STATUS_CODES or attempt >= last_attempt:
                return response

            delay = self._backoff(attempt)
            logger.debug(
                "Calendar returned a retryable status, backing off",
                attempt=attempt,
                status_code=response.status_code,
                backoff_seconds=delay,
            )
            await asyncio.sleep(delay)

        raise RuntimeError("Calendar API retry loop exhausted")

    @staticmethod
    def _headers(access_token: str) -> dict:
        return {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _parse(self, response: httpx.Response, operation: str) -> dict:
        """
        Decode a Calendar API response body.

        Args:
            response: Raw HTTP response
            operation: Scheduler operation name, used in log events

        Returns:
            dict: JSON body, empty for an empty successful response

        Raises:
            GoogleCalendarError: Non-2xx status or an undecodable success body
        """
        logger.debug(
            "Calendar response received",
            operation=operation,
            status_code=response.status_code,
            response_size=len(response.text) if response.text else 0,
        )

        if response.is_success:
            try:
                return response.json() if response.text else {}
            except ValueError as e:
                logger.error("Calendar response was not JSON", operation=operation, error=str(e))
                raise GoogleCalendarError(f"Invalid response format: {e}") from e

        try:
            body = response.json() if response.text else {}
        except ValueError:
            logger.error(
                "Calendar error response was not JSON",
                operation=operation,
                status_code=response.status_code,
                response_text=response.text[:200] if response.text else "",
            )
            raise GoogleCalendarError(
                f"Calendar API error (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from None

        error = body.get("error", {}) if isinstance(body, dict) else {}
        code = str(error.get("code", response.status_code))
        detail = error.get("message", "Unknown Calendar API error")

        logger.error(
            "Calendar call rejected",
            operation=operation,
            status_code=response.status_code,
            error_code=code,
            error_message=detail,
        )

        raise GoogleCalendarError(
            ERROR_MESSAGES.get(code, f"Calendar error: {detail}"),
            error_code=code,
            status_code=response.status_code,
            response_data=body,
        )

    async def query_free_busy(
        self,
        access_token: str,
        start_time: datetime,
        end_time: datetime,
        calendar_id: str = CALENDAR_PRIMARY,
    ) -> list[BusyInterval]:
        """
        Busy blocks on ``calendar_id`` between ``start_time`` and ``end_time``.

        Periods the API reports with unparseable bounds are skipped. A
        per-calendar ``notFound`` error means the token can't see the
        calendar and is reported as a 403.
        """
        payload = {
            "timeMin": start_time.isoformat(),
            "timeMax": end_time.isoformat(),
            "items": [{"id": calendar_id}],
        }

        logger.info(
            "Looking up free/busy",
            start_time=payload["timeMin"],
            end_time=payload["timeMax"],
            calendar_id=calendar_id,
        )

        try:
            response = await self._send(
                "POST",
                f"{self.base_url}/freeBusy",
                headers=self._headers(access_token),
                json=payload,
            )
            data = self._parse(response, "query_free_busy")
        except GoogleCalendarError:
            raise
        except Exception as e:
            logger.error("Free/busy lookup crashed", error=str(e))
            raise GoogleCalendarError(f"Failed to query free/busy: {e}") from e

        entry = data.get("calendars", {}).get(calendar_id, {})
        if entry.get("errors"):
            reason = entry["errors"][0].get("reason", "unknown")
            logger.warning("Free/busy unavailable for calendar", calendar_id=calendar_id, reason=reason)
            raise GoogleCalendarError(
                f"Calendar free/busy unavailable: {reason}",
                error_code=reason,
                status_code=403 if reason == "notFound" else None,
                response_data=data,
            )

        intervals = []
        for period in entry.get("busy", []):
            interval = BusyInterval.from_api(period)
            if interval is not None:
                intervals.append(interval)

        logger.info(
            "Free/busy lookup finished",
            busy_periods_count=len(intervals),
            skipped_malformed=len(entry.get("busy", [])) - len(intervals),
        )
        return intervals

    async def create_event(
        self,
        access_token: str,
        summary: str,
        start_time: datetime,
        end_time: datetime,
        calendar_id: str = CALENDAR_PRIMARY,
        description: str = "",
        location: str | None = None,
        timezone_str: str = "UTC",
    ) -> str:
        """Insert a confirmed hangout event and return the id Google assigned."""
        body: dict[str, Any] = {
            "summary": summary,
            "description": description,
            "start": {"dateTime": start_time.isoformat(), "timeZone": timezone_str},
            "end": {"dateTime": end_time.isoformat(), "timeZone": timezone_str},
            "status": "confirmed",
        }
        if location:
            body["location"] = location

        logger.info(
            "Inserting hangout event",
            summary=summary,
            start_time=start_time.isoformat(),
            calendar_id=calendar_id,
        )

        try:
            response = await self._send(
                "POST",
                f"{self.base_url}/calendars/{calendar_id}/events",
                headers=self._headers(access_token),
                json=body,
            )
            data = self._parse(response, "create_event")
        except GoogleCalendarError:
            raise
        except Exception as e:
            logger.error("Event insert crashed", summary=summary, error=str(e))
            raise GoogleCalendarError(f"Failed to create event: {e}") from e

        event_id = data.get("id")
        if not event_id:
            raise GoogleCalendarError("Calendar API returned an event without an id")

        logger.info("Hangout event inserted", event_id=event_id)
        return event_id

    async def delete_event(
        self, access_token: str, event_id: str, calendar_id: str = CALENDAR_PRIMARY
    ) -> bool:
        """
        Remove a hangout event.

        Returns True once the event is gone; 410 Gone counts, since the event
        was already removed.
        """
        logger.info("Removing hangout event", event_id=event_id, calendar_id=calendar_id)

        try:
            response = await self._send(
                "DELETE",
                f"{self.base_url}/calendars/{calendar_id}/events/{event_id}",
                headers=self._headers(access_token),
            )
        except Exception as e:
            logger.error("Event removal crashed", event_id=event_id, error=str(e))
            raise GoogleCalendarError(f"Failed to delete event: {e}") from e

        if response.status_code in (204, 410):
            logger.info(
                "Hangout event removed",
                event_id=event_id,
                already_gone=response.status_code == 410,
            )
            return True

        self._parse(response, "delete_event")
        return True

    async def health_check(self) -> dict[str, Any]:
        """Reachability of the Calendar API for the readiness check."""
        status: dict[str, Any] = {
            "healthy": True,
            "service": "google_calendar",
            "api_base_url": self.base_url,
            "request_timeout": self.timeout,
            "max_retries": self.max_retries,
        }

        try:
            response = await self._client.request("HEAD", self.base_url, timeout=5.0)
        except httpx.RequestError as e:
            status["healthy"] = False
            status["api_connectivity"] = f"error_{type(e).__name__}"
            return status

        status["api_connectivity"] = (
            "ok" if response.status_code in REACHABLE_STATUS_CODES else f"error_{response.status_code}"
        )
        return status
