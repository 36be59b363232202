"""
Hangout and persona persistence.
The scheduler only needs single-document get/replace semantics; any store
offering that (document DB, SQL row, key-value) can implement the gateway.
"""

import asyncio
from typing import Protocol

from hangout_scheduler.exceptions import PersistenceError
from hangout_scheduler.infrastructure.observability.logging import get_logger
from hangout_scheduler.models.domain.hangout_domain import HangoutRequest, Persona

logger = get_logger(__name__)


class PersistenceGateway(Protocol):
    """Durable store for hangout requests and personas. Failures raise PersistenceError."""

    async def get_request(self, request_id: str) -> HangoutRequest | None: ...

    async def put_request(self, request: HangoutRequest) -> None: ...

    async def delete_request(self, request_id: str) -> bool: ...

    async def query_requests_by_party(self, user_id: str) -> list[HangoutRequest]: ...

    async def list_personas(self, user_id: str) -> list[Persona]: ...

    async def put_persona(self, persona: Persona) -> None: ...


class InMemoryHangoutRepository:
    """
    Process-local PersistenceGateway.

    Records are deep-copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self):
        self._requests: dict[str, HangoutRequest] = {}
        self._personas: dict[str, dict[str, Persona]] = {}
        self._lock = asyncio.Lock()

    async def get_request(self, request_id: str) -> HangoutRequest | None:
        request = self._requests.get(request_id)
        return request.model_copy(deep=True) if request else None

    async def put_request(self, request: HangoutRequest) -> None:
        if not request.id:
            raise PersistenceError("Hangout request has no id", operation="put_request")
        async with self._lock:
            self._requests[request.id] = request.model_copy(deep=True)
        logger.debug("Hangout request stored", request_id=request.id, status=request.status.value)

    async def delete_request(self, request_id: str) -> bool:
        async with self._lock:
            removed = self._requests.pop(request_id, None) is not None
        logger.debug("Hangout request deleted", request_id=request_id, removed=removed)
        return removed

    async def query_requests_by_party(self, user_id: str) -> list[HangoutRequest]:
        # Keyed by id, so a request is returned once even if both sides match
        matches = {
            request_id: request.model_copy(deep=True)
            for request_id, request in self._requests.items()
            if request.involves(user_id)
        }
        return sorted(matches.values(), key=lambda r: r.start_date)

    async def list_personas(self, user_id: str) -> list[Persona]:
        return [p.model_copy() for p in self._personas.get(user_id, {}).values()]

    async def put_persona(self, persona: Persona) -> None:
        async with self._lock:
            self._personas.setdefault(persona.user_id, {})[persona.id] = persona.model_copy()
        logger.debug("Persona stored", persona_id=persona.id, user_id=persona.user_id)
