"""
Notifications sent to the other party on hangout transitions.
Delivery is owned by the dispatcher implementation; the scheduler only builds
the payload and hands it off.
"""

from enum import Enum
from typing import Any, Protocol

from hangout_scheduler.infrastructure.observability.logging import get_logger
from hangout_scheduler.models.domain.hangout_domain import HangoutRequest

logger = get_logger(__name__)


class NotificationKind(str, Enum):
    NEW_HANGOUT_REQUEST = "new_hangout_request"
    HANGOUT_ACCEPTED = "hangout_accepted"
    HANGOUT_DECLINED = "hangout_declined"
    HANGOUT_CANCELLED = "hangout_cancelled"


NOTIFICATION_COPY: dict[NotificationKind, tuple[str, str]] = {
    NotificationKind.NEW_HANGOUT_REQUEST: (
        "New Hangout Request",
        "You have a new hangout request: {title}",
    ),
    NotificationKind.HANGOUT_ACCEPTED: (
        "Hangout Accepted",
        "Your hangout request was accepted: {title}",
    ),
    NotificationKind.HANGOUT_DECLINED: (
        "Hangout Declined",
        "Your hangout request was declined: {title}",
    ),
    NotificationKind.HANGOUT_CANCELLED: (
        "Hangout Cancelled",
        "A hangout was cancelled: {title}",
    ),
}


class NotificationDispatcher(Protocol):
    async def notify(self, user_id: str, kind: NotificationKind, payload: dict[str, Any]) -> None: ...


def build_notification_payload(kind: NotificationKind, request: HangoutRequest) -> dict[str, Any]:
    """Push payload: display text under ``notification``, routing keys under ``data``."""
    title, body = NOTIFICATION_COPY[kind]
    return {
        "notification": {
            "title": title,
            "body": body.format(title=request.title),
            "sound": "default",
        },
        "data": {
            "type": kind.value,
            "hangoutId": request.id,
            "title": request.title,
            "startDate": request.start_date.isoformat(),
        },
    }


class LoggingNotificationDispatcher:
    """Dispatcher that records notifications in the log instead of delivering them."""

    async def notify(self, user_id: str, kind: NotificationKind, payload: dict[str, Any]) -> None:
        logger.info(
            "Notification dispatched",
            user_id=user_id,
            kind=kind.value,
            hangout_id=payload.get("data", {}).get("hangoutId"),
        )
