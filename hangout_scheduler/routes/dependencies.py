"""
Shared route dependencies.
Services are wired once in the app factory and read from app.state.
"""

from fastapi import Header, HTTPException, Request, status

from hangout_scheduler.services.availability.engine import AvailabilityEngine
from hangout_scheduler.services.hangouts.lifecycle import HangoutLifecycleService


def caller_id(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity, supplied by the upstream gateway after authentication."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id")
    return x_user_id.strip()


def get_hangout_service(request: Request) -> HangoutLifecycleService:
    return request.app.state.hangout_service


def get_availability_engine(request: Request) -> AvailabilityEngine:
    return request.app.state.availability_engine
