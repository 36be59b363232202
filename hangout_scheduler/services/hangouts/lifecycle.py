"""
Hangout request lifecycle.
Creates pending requests and applies respond/cancel/complete/delete
transitions, with calendar and notification side effects gated on the
status change.

Calendar writes to the two parties' calendars are independent best-effort
calls with no distributed coordination: one side can end up with an event
while the other doesn't. The per-party event ids on the record make that
state visible so cleanup can target exactly what exists.
"""

import asyncio
import weakref
from collections.abc import Callable
from datetime import UTC, datetime
from uuid import uuid4

from hangout_scheduler.config import settings
from hangout_scheduler.exceptions import (
    AccessUnavailable,
    CalendarTransportError,
    HangoutNotFoundError,
    InvalidTransition,
    PersistenceError,
    SchedulingConflictError,
    ValidationError,
)
from hangout_scheduler.infrastructure.observability.logging import (
    get_logger,
    log_side_effect_failure,
)
from hangout_scheduler.models.api.hangout_request import CreateHangoutRequest
from hangout_scheduler.models.domain.hangout_domain import (
    HangoutBuckets,
    HangoutRequest,
    HangoutStatus,
    Persona,
    ResponseDecision,
    can_transition,
    partition_hangouts,
)
from hangout_scheduler.repositories.hangout_repository import PersistenceGateway
from hangout_scheduler.services.availability.engine import AvailabilityEngine
from hangout_scheduler.services.calendar.access_provider import CalendarAccessProvider
from hangout_scheduler.services.notifications.dispatcher import (
    NotificationDispatcher,
    NotificationKind,
    build_notification_payload,
)

logger = get_logger(__name__)

DECISION_TO_STATUS = {
    ResponseDecision.ACCEPTED: HangoutStatus.ACCEPTED,
    ResponseDecision.DECLINED: HangoutStatus.DECLINED,
}

DECISION_TO_NOTIFICATION = {
    ResponseDecision.ACCEPTED: NotificationKind.HANGOUT_ACCEPTED,
    ResponseDecision.DECLINED: NotificationKind.HANGOUT_DECLINED,
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


class HangoutLifecycleService:
    """
    State machine for hangout requests.

    pending -> accepted | declined | cancelled
    accepted -> cancelled | completed

    Transitions on the same request id are serialized within this process.
    Persistence failures propagate; calendar and notification failures are
    logged and never undo a transition.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        calendar_provider: CalendarAccessProvider,
        availability_engine: AvailabilityEngine,
        notifier: NotificationDispatcher,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.gateway = gateway
        self.calendar_provider = calendar_provider
        self.availability_engine = availability_engine
        self.notifier = notifier
        self.clock = clock
        # Entries vanish once no coroutine holds or waits on the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, request_id: str) -> asyncio.Lock:
        lock = self._locks.get(request_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[request_id] = lock
        return lock

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create(self, fields: CreateHangoutRequest) -> HangoutRequest:
        """
        Propose a hangout.

        Once stored, an event is placed on the creator's own calendar
        (best-effort) so the slot is held while the invitee decides.

        Args:
            fields: Validated request fields

        Returns:
            HangoutRequest: The stored request, status pending

        Raises:
            ValidationError: Bad window, same creator and invitee, unknown persona
            SchedulingConflictError: Creator's own calendar is busy for the window
            PersistenceError: The request could not be stored
        """
        self._validate_create(fields)

        persona = await self._ensure_creator_persona(
            fields.creator_user_id, fields.creator_persona_id
        )

        creator_free = await self.availability_engine.is_user_free(
            fields.creator_user_id, fields.start_date, fields.end_date
        )
        if creator_free is False:
            logger.info(
                "Hangout rejected, creator calendar conflict",
                creator_user_id=fields.creator_user_id,
                start_date=fields.start_date.isoformat(),
            )
            raise SchedulingConflictError(
                "You are not available during this time. Please check your calendar.",
                user_id=fields.creator_user_id,
            )
        if creator_free is None:
            logger.info(
                "Creator calendar unreadable, skipping self-conflict check",
                creator_user_id=fields.creator_user_id,
            )

        now = self.clock()
        request = HangoutRequest(
            id=uuid4().hex,
            title=fields.title,
            description=fields.description,
            start_date=fields.start_date,
            end_date=fields.end_date,
            location=fields.location,
            creator_user_id=fields.creator_user_id,
            creator_persona_id=persona.id,
            invitee_user_id=fields.invitee_user_id,
            invitee_persona_id=fields.invitee_persona_id,
            status=HangoutStatus.PENDING,
            created_at=now,
            updated_at=now,
        )

        async with self._lock_for(request.id):
            await self._put(request)

            logger.info(
                "Hangout request created",
                request_id=request.id,
                creator_user_id=request.creator_user_id,
                invitee_user_id=request.invitee_user_id,
                start_date=request.start_date.isoformat(),
            )

            request = await self._attach_calendar_events(request, [request.creator_user_id])

        await self._notify(request.invitee_user_id, NotificationKind.NEW_HANGOUT_REQUEST, request)
        return request

    async def respond(
        self,
        request_id: str,
        decision: ResponseDecision | str,
        acting_user_id: str | None = None,
    ) -> HangoutRequest:
        """
        Accept or decline a pending request.

        On accept, calendar events are created on the invitee's calendar and,
        unless it already has one, the creator's. Calendar failures leave
        ``calendar_event_id`` unset but the request is still accepted. On
        decline, the creator's held event is removed.

        Raises:
            InvalidTransition: Request is not pending
            ValidationError: Unknown decision, or acting user is not the invitee
        """
        decision = self._coerce_decision(decision)
        target = DECISION_TO_STATUS[decision]

        async with self._lock_for(request_id):
            request = await self._load(request_id)

            if acting_user_id is not None and acting_user_id != request.invitee_user_id:
                raise ValidationError(
                    "Only the invitee can respond to a hangout request",
                    field="acting_user_id",
                    user_id=acting_user_id,
                )
            if request.status is not HangoutStatus.PENDING:
                raise self._invalid(request, "respond")

            request = self._with_status(request, target)
            await self._put(request)

            logger.info(
                "Hangout request answered",
                request_id=request.id,
                decision=decision.value,
                invitee_user_id=request.invitee_user_id,
            )

            if decision is ResponseDecision.ACCEPTED:
                request = await self._attach_calendar_events(
                    request, [request.invitee_user_id, request.creator_user_id]
                )
            elif request.has_calendar_event():
                request = await self._remove_calendar_events(request)

        await self._notify(request.creator_user_id, DECISION_TO_NOTIFICATION[decision], request)
        return request

    async def cancel(self, request_id: str, acting_user_id: str | None = None) -> HangoutRequest:
        """
        Cancel a pending or accepted request.

        Calendar events are removed from both calendars independently; a
        failed removal on one side doesn't block the other or the cancel.

        Raises:
            InvalidTransition: Request is declined, cancelled or completed
            ValidationError: Acting user is not a party to the request
        """
        async with self._lock_for(request_id):
            request = await self._load(request_id)

            if acting_user_id is not None and not request.involves(acting_user_id):
                raise ValidationError(
                    "Only a party to the hangout can cancel it",
                    field="acting_user_id",
                    user_id=acting_user_id,
                )
            if not can_transition(request.status, HangoutStatus.CANCELLED):
                raise self._invalid(request, "cancel")

            request = self._with_status(request, HangoutStatus.CANCELLED)
            await self._put(request)

            logger.info(
                "Hangout request cancelled",
                request_id=request.id,
                acting_user_id=acting_user_id,
                had_calendar_event=request.has_calendar_event(),
            )

            if request.has_calendar_event():
                request = await self._remove_calendar_events(request)

        if acting_user_id is not None:
            recipients = [request.counterpart_of(acting_user_id)]
        else:
            recipients = list(request.party_ids())
        for user_id in recipients:
            await self._notify(user_id, NotificationKind.HANGOUT_CANCELLED, request)

        return request

    async def complete(self, request_id: str) -> HangoutRequest:
        """
        Mark an accepted request whose end time has passed as completed.

        Raises:
            InvalidTransition: Request is not accepted, or hasn't ended yet
        """
        async with self._lock_for(request_id):
            request = await self._load(request_id)

            if not can_transition(request.status, HangoutStatus.COMPLETED):
                raise self._invalid(request, "complete")
            if not request.has_ended(self.clock()):
                raise InvalidTransition(
                    f"Hangout request {request.id} has not ended yet",
                    request_id=request.id,
                    current_status=request.status.value,
                    attempted="complete",
                )

            request = self._with_status(request, HangoutStatus.COMPLETED)
            await self._put(request)

        logger.info("Hangout request completed", request_id=request.id)
        return request

    async def delete(self, request_id: str) -> bool:
        """
        Hard-delete a request, attempting calendar cleanup first.

        Returns:
            bool: True if a record was removed
        """
        async with self._lock_for(request_id):
            request = await self._load(request_id)

            if request.has_calendar_event():
                await self._remove_calendar_events(request, persist=False)

            try:
                removed = await self.gateway.delete_request(request_id)
            except PersistenceError:
                raise
            except Exception as e:
                logger.error("Unexpected error deleting hangout", request_id=request_id, error=str(e))
                raise PersistenceError(
                    f"Failed to delete hangout: {e}", operation="delete_request"
                ) from e

        logger.info("Hangout request deleted", request_id=request_id, removed=removed)
        return removed

    async def get(self, request_id: str) -> HangoutRequest:
        return await self._load(request_id)

    async def list_for_user(self, user_id: str) -> HangoutBuckets:
        """A user's requests split into pending, upcoming and past views."""
        try:
            requests = await self.gateway.query_requests_by_party(user_id)
        except PersistenceError:
            raise
        except Exception as e:
            logger.error("Unexpected error listing hangouts", user_id=user_id, error=str(e))
            raise PersistenceError(
                f"Failed to list hangouts: {e}", operation="query_requests_by_party"
            ) from e

        unique = {request.id: request for request in requests}
        return partition_hangouts(list(unique.values()), now=self.clock())

    # ------------------------------------------------------------------
    # Validation and state helpers
    # ------------------------------------------------------------------

    def _validate_create(self, fields: CreateHangoutRequest) -> None:
        if fields.start_date.tzinfo is None or fields.end_date.tzinfo is None:
            raise ValidationError("start_date and end_date must be timezone-aware", field="start_date")
        if fields.end_date <= fields.start_date:
            raise ValidationError("end_date must be after start_date", field="end_date")
        if fields.creator_user_id == fields.invitee_user_id:
            raise ValidationError(
                "You can't invite yourself to a hangout",
                field="invitee_user_id",
                user_id=fields.creator_user_id,
            )

    def _coerce_decision(self, decision: ResponseDecision | str) -> ResponseDecision:
        try:
            return ResponseDecision(decision)
        except ValueError:
            raise ValidationError(
                f"Unknown decision {decision!r}; expected accepted or declined",
                field="decision",
            ) from None

    def _invalid(self, request: HangoutRequest, attempted: str) -> InvalidTransition:
        logger.info(
            "Rejected invalid hangout transition",
            request_id=request.id,
            current_status=request.status.value,
            attempted=attempted,
        )
        return InvalidTransition(
            f"Cannot {attempted} a hangout that is {request.status.value}",
            request_id=request.id,
            current_status=request.status.value,
            attempted=attempted,
        )

    def _with_status(self, request: HangoutRequest, status: HangoutStatus) -> HangoutRequest:
        return request.model_copy(update={"status": status, "updated_at": self.clock()})

    async def _ensure_creator_persona(self, user_id: str, persona_id: str | None) -> Persona:
        try:
            personas = await self.gateway.list_personas(user_id)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to load personas: {e}", operation="list_personas") from e

        if persona_id is not None:
            for persona in personas:
                if persona.id == persona_id:
                    return persona
            raise ValidationError(
                "Creator persona not found", field="creator_persona_id", user_id=user_id
            )

        if personas:
            return next((p for p in personas if p.is_default), personas[0])

        persona = Persona(
            id=uuid4().hex,
            name=settings.DEFAULT_PERSONA_NAME,
            user_id=user_id,
            is_default=True,
        )
        try:
            await self.gateway.put_persona(persona)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to store persona: {e}", operation="put_persona") from e

        logger.info("Default persona created", user_id=user_id, persona_id=persona.id)
        return persona

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _load(self, request_id: str) -> HangoutRequest:
        try:
            request = await self.gateway.get_request(request_id)
        except PersistenceError:
            raise
        except Exception as e:
            logger.error("Unexpected error loading hangout", request_id=request_id, error=str(e))
            raise PersistenceError(f"Failed to load hangout: {e}", operation="get_request") from e

        if request is None:
            raise HangoutNotFoundError(request_id)
        return request

    async def _put(self, request: HangoutRequest) -> None:
        try:
            await self.gateway.put_request(request)
        except PersistenceError as e:
            logger.error(
                "Failed to store hangout",
                request_id=request.id,
                status=request.status.value,
                error=str(e),
            )
            raise
        except Exception as e:
            logger.error(
                "Unexpected error storing hangout",
                request_id=request.id,
                status=request.status.value,
                error=str(e),
            )
            raise PersistenceError(f"Failed to store hangout: {e}", operation="put_request") from e

    # ------------------------------------------------------------------
    # Side effects (best-effort)
    # ------------------------------------------------------------------

    async def _attach_calendar_events(
        self, request: HangoutRequest, user_ids: list[str]
    ) -> HangoutRequest:
        """Create events for the given parties that don't have one yet; persist the ids obtained."""
        targets = [user_id for user_id in user_ids if user_id not in request.calendar_event_ids]
        if not targets:
            return request

        results = await asyncio.gather(
            *(self._create_event_for(request, user_id) for user_id in targets)
        )
        created = {user_id: event_id for user_id, event_id in zip(targets, results) if event_id}

        if not created:
            logger.warning(
                "No calendar events created",
                request_id=request.id,
                status=request.status.value,
                attempted=len(targets),
            )
            return request

        # "First" follows attempt order: invitee before creator
        first_event_id = next(event_id for event_id in results if event_id)
        updated = request.model_copy(
            update={
                "calendar_event_ids": {**request.calendar_event_ids, **created},
                "calendar_event_id": request.calendar_event_id or first_event_id,
                "updated_at": self.clock(),
            }
        )

        try:
            await self._put(updated)
        except PersistenceError as e:
            # Unrecorded events could never be cleaned up later, so take them back out
            log_side_effect_failure("record_calendar_events", request.id, None, e)
            await asyncio.gather(
                *(
                    self._delete_event_for(request, user_id, event_id)
                    for user_id, event_id in created.items()
                )
            )
            return request

        logger.info(
            "Calendar events attached",
            request_id=request.id,
            calendar_event_id=updated.calendar_event_id,
            calendars=len(created),
        )
        return updated

    async def _create_event_for(self, request: HangoutRequest, user_id: str) -> str | None:
        try:
            return await self.calendar_provider.create_event(
                user_id,
                request.title,
                request.description,
                request.start_date,
                request.end_date,
                request.location,
            )
        except (AccessUnavailable, CalendarTransportError) as e:
            log_side_effect_failure("create_calendar_event", request.id, user_id, e)
            return None
        except Exception as e:
            logger.error(
                "Unexpected error creating calendar event",
                request_id=request.id,
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    async def _remove_calendar_events(
        self, request: HangoutRequest, persist: bool = True
    ) -> HangoutRequest:
        """Delete events from both calendars; drop the ids that are gone."""
        targets = [
            (user_id, request.event_id_for(user_id))
            for user_id in request.party_ids()
            if request.event_id_for(user_id)
        ]

        results = await asyncio.gather(
            *(self._delete_event_for(request, user_id, event_id) for user_id, event_id in targets)
        )
        removed = {user_id for (user_id, _), ok in zip(targets, results) if ok}

        logger.info(
            "Calendar cleanup finished",
            request_id=request.id,
            attempted=len(targets),
            removed=len(removed),
        )

        if not removed:
            return request

        remaining = {
            user_id: event_id
            for user_id, event_id in request.calendar_event_ids.items()
            if user_id not in removed
        }
        if request.calendar_event_ids:
            calendar_event_id = next(iter(remaining.values()), None)
        else:
            calendar_event_id = None if len(removed) == len(targets) else request.calendar_event_id

        updated = request.model_copy(
            update={
                "calendar_event_ids": remaining,
                "calendar_event_id": calendar_event_id,
                "updated_at": self.clock(),
            }
        )
        if persist:
            try:
                await self._put(updated)
            except PersistenceError as e:
                # Stale ids are harmless: deleting a gone event counts as success
                log_side_effect_failure("record_calendar_cleanup", request.id, None, e)
        return updated

    async def _delete_event_for(self, request: HangoutRequest, user_id: str, event_id: str) -> bool:
        try:
            await self.calendar_provider.delete_event(user_id, event_id)
            return True
        except (AccessUnavailable, CalendarTransportError) as e:
            log_side_effect_failure("delete_calendar_event", request.id, user_id, e)
            return False
        except Exception as e:
            logger.error(
                "Unexpected error deleting calendar event",
                request_id=request.id,
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    async def _notify(self, user_id: str, kind: NotificationKind, request: HangoutRequest) -> None:
        try:
            await self.notifier.notify(user_id, kind, build_notification_payload(kind, request))
        except Exception as e:
            log_side_effect_failure(f"notify_{kind.value}", request.id, user_id, e)
