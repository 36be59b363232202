"""
Hangout API Routes
HTTP endpoints for mutual availability and the hangout request lifecycle.
"""

from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status

from hangout_scheduler.exceptions import (
    HangoutNotFoundError,
    HangoutSchedulerError,
    InvalidTransition,
    PersistenceError,
    SchedulingConflictError,
    ValidationError,
)
from hangout_scheduler.infrastructure.observability.logging import get_logger
from hangout_scheduler.models.api.hangout_request import CreateHangoutBody, RespondRequest
from hangout_scheduler.models.api.hangout_response import (
    AvailabilityResponse,
    DeleteHangoutResponse,
    HangoutListResponse,
    HangoutResponse,
)
from hangout_scheduler.routes.dependencies import (
    caller_id,
    get_availability_engine,
    get_hangout_service,
)
from hangout_scheduler.services.availability.engine import AvailabilityEngine
from hangout_scheduler.services.hangouts.lifecycle import HangoutLifecycleService

logger = get_logger(__name__)

router = APIRouter(prefix="/hangouts", tags=["hangouts"])


def _to_http_error(error: HangoutSchedulerError, operation: str, user_id: str) -> HTTPException:
    """Map scheduler errors onto HTTP status codes."""
    if isinstance(error, SchedulingConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    if isinstance(error, ValidationError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(error))
    if isinstance(error, InvalidTransition):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    if isinstance(error, HangoutNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, PersistenceError):
        logger.error(
            "Persistence failure", operation=operation, user_id=user_id, error=str(error)
        )
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Hangout storage temporarily unavailable",
        )

    logger.error("Unhandled scheduler error", operation=operation, user_id=user_id, error=str(error))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Failed to {operation}"
    )


@router.get("/availability", response_model=AvailabilityResponse)
async def get_mutual_availability(
    partner_user_id: str = Query(..., min_length=1, description="The other party"),
    duration_minutes: int = Query(
        default=60, gt=0, le=24 * 60, description="Window length in minutes"
    ),
    range_start: datetime | None = Query(default=None, description="Scan start (default: now)"),
    range_end: datetime | None = Query(default=None, description="Scan end"),
    user_id: str = Depends(caller_id),
    engine: AvailabilityEngine = Depends(get_availability_engine),
):
    """Windows in which the caller and the partner are both free."""
    default_start, default_end = engine.default_scan_range()
    try:
        result = await engine.find_availability(
            user_id,
            partner_user_id,
            range_start or default_start,
            range_end or default_end,
            timedelta(minutes=duration_minutes),
        )
    except HangoutSchedulerError as e:
        raise _to_http_error(e, "find availability", user_id)

    return AvailabilityResponse.from_result(result)


@router.post("", response_model=HangoutResponse, status_code=status.HTTP_201_CREATED)
async def create_hangout(
    body: CreateHangoutBody,
    user_id: str = Depends(caller_id),
    service: HangoutLifecycleService = Depends(get_hangout_service),
):
    """Propose a hangout to another user."""
    try:
        hangout = await service.create(body.for_creator(user_id))
    except HangoutSchedulerError as e:
        raise _to_http_error(e, "create hangout", user_id)

    return HangoutResponse.from_domain(hangout)


@router.get("", response_model=HangoutListResponse)
async def list_hangouts(
    user_id: str = Depends(caller_id),
    service: HangoutLifecycleService = Depends(get_hangout_service),
):
    """Caller's hangouts split into pending, upcoming and past."""
    try:
        buckets = await service.list_for_user(user_id)
    except HangoutSchedulerError as e:
        raise _to_http_error(e, "list hangouts", user_id)

    return HangoutListResponse.from_buckets(buckets)


@router.get("/{hangout_id}", response_model=HangoutResponse)
async def get_hangout(
    hangout_id: str,
    user_id: str = Depends(caller_id),
    service: HangoutLifecycleService = Depends(get_hangout_service),
):
    try:
        hangout = await service.get(hangout_id)
    except HangoutSchedulerError as e:
        raise _to_http_error(e, "get hangout", user_id)

    # Don't reveal hangouts the caller isn't part of
    if not hangout.involves(user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Hangout not found")

    return HangoutResponse.from_domain(hangout)


@router.post("/{hangout_id}/respond", response_model=HangoutResponse)
async def respond_to_hangout(
    hangout_id: str,
    body: RespondRequest,
    user_id: str = Depends(caller_id),
    service: HangoutLifecycleService = Depends(get_hangout_service),
):
    """Invitee accepts or declines a pending hangout."""
    try:
        hangout = await service.respond(hangout_id, body.decision, acting_user_id=user_id)
    except HangoutSchedulerError as e:
        raise _to_http_error(e, "respond to hangout", user_id)

    return HangoutResponse.from_domain(hangout)


@router.post("/{hangout_id}/cancel", response_model=HangoutResponse)
async def cancel_hangout(
    hangout_id: str,
    user_id: str = Depends(caller_id),
    service: HangoutLifecycleService = Depends(get_hangout_service),
):
    try:
        hangout = await service.cancel(hangout_id, acting_user_id=user_id)
    except HangoutSchedulerError as e:
        raise _to_http_error(e, "cancel hangout", user_id)

    return HangoutResponse.from_domain(hangout)


@router.post("/{hangout_id}/complete", response_model=HangoutResponse)
async def complete_hangout(
    hangout_id: str,
    user_id: str = Depends(caller_id),
    service: HangoutLifecycleService = Depends(get_hangout_service),
):
    try:
        existing = await service.get(hangout_id)
        if not existing.involves(user_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Hangout not found")
        hangout = await service.complete(hangout_id)
    except HangoutSchedulerError as e:
        raise _to_http_error(e, "complete hangout", user_id)

    return HangoutResponse.from_domain(hangout)


@router.delete("/{hangout_id}", response_model=DeleteHangoutResponse)
async def delete_hangout(
    hangout_id: str,
    user_id: str = Depends(caller_id),
    service: HangoutLifecycleService = Depends(get_hangout_service),
):
    """Remove a hangout record, cleaning up calendar events first."""
    try:
        existing = await service.get(hangout_id)
        if not existing.involves(user_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Hangout not found")
        removed = await service.delete(hangout_id)
    except HangoutSchedulerError as e:
        raise _to_http_error(e, "delete hangout", user_id)

    return DeleteHangoutResponse(success=removed, hangout_id=hangout_id)
