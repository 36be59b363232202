"""
Tests for the hangout request lifecycle: creation checks, transitions and
best-effort calendar/notification side effects.
"""

import gc
from datetime import UTC, datetime, timedelta

import pytest

from hangout_scheduler.exceptions import (
    HangoutNotFoundError,
    InvalidTransition,
    PersistenceError,
    SchedulingConflictError,
    ValidationError,
)
from hangout_scheduler.models.api.hangout_request import CreateHangoutRequest
from hangout_scheduler.models.domain.hangout_domain import HangoutStatus, Persona
from hangout_scheduler.repositories.hangout_repository import InMemoryHangoutRepository
from hangout_scheduler.services.hangouts.lifecycle import HangoutLifecycleService

START = datetime(2026, 10, 21, 18, 0, tzinfo=UTC)
END = START + timedelta(hours=2)


def make_fields(**overrides) -> CreateHangoutRequest:
    data = {
        "title": "Dinner",
        "description": "Tacos downtown",
        "start_date": START,
        "end_date": END,
        "location": "Main St",
        "creator_user_id": "alice",
        "invitee_user_id": "bob",
        "invitee_persona_id": "bob-persona",
    }
    data.update(overrides)
    return CreateHangoutRequest(**data)


async def accepted_hangout(service):
    hangout = await service.create(make_fields())
    return await service.respond(hangout.id, "accepted", acting_user_id="bob")


class FlakyRepository(InMemoryHangoutRepository):
    """Store whose Nth put_request fails."""

    def __init__(self, fail_on_put: int):
        super().__init__()
        self.fail_on_put = fail_on_put
        self.puts = 0

    async def put_request(self, request):
        self.puts += 1
        if self.puts == self.fail_on_put:
            raise PersistenceError("write timed out", operation="put_request")
        await super().put_request(request)


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_stores_pending_and_notifies_invitee(self, service, repository, dispatcher):
        hangout = await service.create(make_fields())

        stored = await repository.get_request(hangout.id)
        assert stored.status is HangoutStatus.PENDING
        assert stored.created_at == stored.updated_at
        assert dispatcher.sent[0][0] == "bob"
        assert dispatcher.sent[0][1] == "new_hangout_request"
        assert dispatcher.sent[0][2]["data"]["hangoutId"] == hangout.id

    @pytest.mark.asyncio
    async def test_create_holds_the_slot_on_creator_calendar(self, service, repository, calendar):
        hangout = await service.create(make_fields())

        stored = await repository.get_request(hangout.id)
        assert calendar.created == [("alice", "evt-alice-1")]
        assert stored.calendar_event_ids == {"alice": "evt-alice-1"}
        assert stored.calendar_event_id == "evt-alice-1"
        assert hangout.calendar_event_ids == stored.calendar_event_ids

    @pytest.mark.asyncio
    async def test_create_without_creator_event_stays_pending(self, service, repository, calendar, dispatcher):
        calendar.failing_creates.add("alice")

        hangout = await service.create(make_fields())

        stored = await repository.get_request(hangout.id)
        assert stored.status is HangoutStatus.PENDING
        assert stored.calendar_event_ids == {}
        assert stored.calendar_event_id is None
        assert dispatcher.sent[0][:2] == ("bob", "new_hangout_request")

    @pytest.mark.asyncio
    async def test_create_derives_default_persona(self, service, repository):
        hangout = await service.create(make_fields())

        personas = await repository.list_personas("alice")
        assert len(personas) == 1
        assert personas[0].is_default
        assert hangout.creator_persona_id == personas[0].id

        # A second request reuses it
        again = await service.create(
            make_fields(start_date=START + timedelta(days=1), end_date=END + timedelta(days=1))
        )
        assert again.creator_persona_id == personas[0].id
        assert len(await repository.list_personas("alice")) == 1

    @pytest.mark.asyncio
    async def test_create_with_foreign_persona_is_rejected(self, service, repository):
        await repository.put_persona(Persona(id="p-bob", name="Bob", user_id="bob"))

        with pytest.raises(ValidationError):
            await service.create(make_fields(creator_persona_id="p-bob"))

    @pytest.mark.asyncio
    async def test_start_equal_to_end_writes_nothing(self, service, repository, calendar, dispatcher):
        with pytest.raises(ValidationError):
            await service.create(make_fields(end_date=START))

        assert await repository.query_requests_by_party("alice") == []
        assert calendar.busy_calls == []
        assert dispatcher.sent == []

    @pytest.mark.asyncio
    async def test_self_invite_is_rejected(self, service):
        with pytest.raises(ValidationError):
            await service.create(make_fields(invitee_user_id="alice"))

    @pytest.mark.asyncio
    async def test_creator_conflict_blocks_creation(self, service, repository, calendar):
        calendar.add_busy("alice", START + timedelta(minutes=30), START + timedelta(hours=1))

        with pytest.raises(SchedulingConflictError):
            await service.create(make_fields())

        assert await repository.query_requests_by_party("alice") == []

    @pytest.mark.asyncio
    async def test_busy_block_touching_the_window_is_not_a_conflict(self, service, calendar):
        calendar.add_busy("alice", START - timedelta(hours=1), START)

        hangout = await service.create(make_fields())

        assert hangout.status is HangoutStatus.PENDING

    @pytest.mark.asyncio
    async def test_unreadable_creator_calendar_allows_creation(self, service, calendar):
        calendar.unavailable.add("alice")

        hangout = await service.create(make_fields())

        assert hangout.status is HangoutStatus.PENDING

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_fail_create(
        self, repository, calendar, engine, failing_dispatcher, clock
    ):
        service = HangoutLifecycleService(
            repository, calendar, engine, failing_dispatcher, clock=clock
        )

        hangout = await service.create(make_fields())

        assert (await repository.get_request(hangout.id)).status is HangoutStatus.PENDING


class TestRespond:
    @pytest.mark.asyncio
    async def test_accept_creates_events_on_both_calendars(self, service, repository, calendar, dispatcher):
        hangout = await accepted_hangout(service)

        stored = await repository.get_request(hangout.id)
        assert stored.status is HangoutStatus.ACCEPTED
        assert set(stored.calendar_event_ids) == {"alice", "bob"}
        # alice's event was placed at create, so hers is the first id
        assert stored.calendar_event_id == stored.calendar_event_ids["alice"]
        assert [user for user, _ in calendar.created] == ["alice", "bob"]
        assert dispatcher.sent[-1][0] == "alice"
        assert dispatcher.sent[-1][1] == "hangout_accepted"

    @pytest.mark.asyncio
    async def test_accept_survives_calendar_failures(self, service, repository, calendar):
        calendar.failing_creates.update({"alice", "bob"})
        hangout = await service.create(make_fields())

        result = await service.respond(hangout.id, "accepted", acting_user_id="bob")

        stored = await repository.get_request(hangout.id)
        assert result.status is HangoutStatus.ACCEPTED
        assert stored.status is HangoutStatus.ACCEPTED
        assert stored.calendar_event_id is None
        assert stored.calendar_event_ids == {}

    @pytest.mark.asyncio
    async def test_accept_with_one_calendar_failing_keeps_the_other(self, service, repository, calendar):
        calendar.failing_creates.add("bob")
        hangout = await service.create(make_fields())

        await service.respond(hangout.id, "accepted", acting_user_id="bob")

        stored = await repository.get_request(hangout.id)
        assert list(stored.calendar_event_ids) == ["alice"]
        assert stored.calendar_event_id == stored.calendar_event_ids["alice"]

    @pytest.mark.asyncio
    async def test_decline_releases_creator_held_event(self, service, repository, calendar, dispatcher):
        hangout = await service.create(make_fields())

        result = await service.respond(hangout.id, "declined")

        stored = await repository.get_request(hangout.id)
        assert result.status is HangoutStatus.DECLINED
        assert calendar.created == [("alice", "evt-alice-1")]
        assert calendar.deleted == [("alice", "evt-alice-1")]
        assert stored.calendar_event_ids == {}
        assert stored.calendar_event_id is None
        assert dispatcher.sent[-1][1] == "hangout_declined"

    @pytest.mark.asyncio
    async def test_accept_survives_failed_event_id_write(self, calendar, engine, dispatcher, clock):
        # puts: pending, creator event id, accepted, invitee event id
        repository = FlakyRepository(fail_on_put=4)
        service = HangoutLifecycleService(repository, calendar, engine, dispatcher, clock=clock)
        hangout = await service.create(make_fields())

        result = await service.respond(hangout.id, "accepted", acting_user_id="bob")

        stored = await repository.get_request(hangout.id)
        assert result.status is HangoutStatus.ACCEPTED
        assert stored.status is HangoutStatus.ACCEPTED
        assert stored.calendar_event_ids == {"alice": "evt-alice-1"}
        # bob's event could not be recorded, so it is taken back out
        assert calendar.created == [("alice", "evt-alice-1"), ("bob", "evt-bob-2")]
        assert calendar.deleted == [("bob", "evt-bob-2")]
        assert dispatcher.sent[-1][:2] == ("alice", "hangout_accepted")

    @pytest.mark.asyncio
    async def test_second_response_is_rejected_without_side_effects(self, service, calendar, dispatcher):
        hangout = await accepted_hangout(service)
        created_before = list(calendar.created)
        sent_before = list(dispatcher.sent)

        with pytest.raises(InvalidTransition):
            await service.respond(hangout.id, "accepted", acting_user_id="bob")
        with pytest.raises(InvalidTransition):
            await service.respond(hangout.id, "declined", acting_user_id="bob")

        assert calendar.created == created_before
        assert dispatcher.sent == sent_before

    @pytest.mark.asyncio
    async def test_only_invitee_may_respond(self, service):
        hangout = await service.create(make_fields())

        with pytest.raises(ValidationError):
            await service.respond(hangout.id, "accepted", acting_user_id="alice")

    @pytest.mark.asyncio
    async def test_unknown_decision_is_rejected(self, service):
        hangout = await service.create(make_fields())

        with pytest.raises(ValidationError):
            await service.respond(hangout.id, "maybe")

    @pytest.mark.asyncio
    async def test_respond_to_missing_request(self, service):
        with pytest.raises(HangoutNotFoundError):
            await service.respond("nope", "accepted")


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_pending_notifies_counterpart(self, service, calendar, dispatcher):
        hangout = await service.create(make_fields())

        result = await service.cancel(hangout.id, acting_user_id="alice")

        assert result.status is HangoutStatus.CANCELLED
        assert calendar.deleted == [("alice", "evt-alice-1")]
        assert not result.has_calendar_event()
        assert dispatcher.sent[-1][:2] == ("bob", "hangout_cancelled")

    @pytest.mark.asyncio
    async def test_cancel_accepted_removes_events(self, service, repository, calendar):
        hangout = await accepted_hangout(service)

        await service.cancel(hangout.id, acting_user_id="bob")

        stored = await repository.get_request(hangout.id)
        assert stored.status is HangoutStatus.CANCELLED
        assert stored.calendar_event_ids == {}
        assert stored.calendar_event_id is None
        assert sorted(user for user, _ in calendar.deleted) == ["alice", "bob"]

    @pytest.mark.asyncio
    async def test_cancel_with_one_failing_delete_still_cancels(self, service, repository, calendar):
        hangout = await accepted_hangout(service)
        calendar.failing_deletes.add("bob")

        result = await service.cancel(hangout.id, acting_user_id="alice")

        stored = await repository.get_request(hangout.id)
        assert result.status is HangoutStatus.CANCELLED
        assert stored.status is HangoutStatus.CANCELLED
        assert [user for user, _ in calendar.deleted] == ["alice"]
        assert list(stored.calendar_event_ids) == ["bob"]
        assert stored.calendar_event_id is not None

    @pytest.mark.asyncio
    async def test_cancel_after_invitee_event_failed_only_touches_creator(self, service, repository, calendar):
        calendar.failing_creates.add("bob")
        hangout = await accepted_hangout(service)

        await service.cancel(hangout.id, acting_user_id="bob")

        stored = await repository.get_request(hangout.id)
        assert calendar.deleted == [("alice", "evt-alice-1")]
        assert stored.calendar_event_ids == {}
        assert stored.calendar_event_id is None

    @pytest.mark.asyncio
    async def test_cancel_survives_failed_cleanup_write(self, calendar, engine, dispatcher, clock):
        # puts: pending, creator event id, accepted, invitee event id, cancelled, cleanup
        repository = FlakyRepository(fail_on_put=6)
        service = HangoutLifecycleService(repository, calendar, engine, dispatcher, clock=clock)
        hangout = await accepted_hangout(service)

        result = await service.cancel(hangout.id, acting_user_id="alice")

        stored = await repository.get_request(hangout.id)
        assert result.status is HangoutStatus.CANCELLED
        assert stored.status is HangoutStatus.CANCELLED
        assert sorted(user for user, _ in calendar.deleted) == ["alice", "bob"]
        assert dispatcher.sent[-1][:2] == ("bob", "hangout_cancelled")

    @pytest.mark.asyncio
    async def test_cancel_falls_back_to_shared_event_id(self, service, repository, calendar):
        hangout = await service.create(make_fields())
        legacy = hangout.model_copy(
            update={
                "status": HangoutStatus.ACCEPTED,
                "calendar_event_id": "shared-1",
                "calendar_event_ids": {},
            }
        )
        await repository.put_request(legacy)

        await service.cancel(hangout.id)

        assert sorted(calendar.deleted) == [("alice", "shared-1"), ("bob", "shared-1")]
        assert (await repository.get_request(hangout.id)).calendar_event_id is None

    @pytest.mark.asyncio
    async def test_cancel_declined_request_is_rejected(self, service):
        hangout = await service.create(make_fields())
        await service.respond(hangout.id, "declined")

        with pytest.raises(InvalidTransition):
            await service.cancel(hangout.id)

    @pytest.mark.asyncio
    async def test_cancel_twice_is_rejected(self, service):
        hangout = await service.create(make_fields())
        await service.cancel(hangout.id)

        with pytest.raises(InvalidTransition):
            await service.cancel(hangout.id)

    @pytest.mark.asyncio
    async def test_outsider_cannot_cancel(self, service):
        hangout = await service.create(make_fields())

        with pytest.raises(ValidationError):
            await service.cancel(hangout.id, acting_user_id="mallory")


class TestComplete:
    @pytest.mark.asyncio
    async def test_complete_after_end(self, service, clock):
        hangout = await accepted_hangout(service)
        clock.now = END + timedelta(minutes=1)

        result = await service.complete(hangout.id)

        assert result.status is HangoutStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_complete_before_end_is_rejected(self, service):
        hangout = await accepted_hangout(service)

        with pytest.raises(InvalidTransition):
            await service.complete(hangout.id)

    @pytest.mark.asyncio
    async def test_complete_pending_is_rejected(self, service, clock):
        hangout = await service.create(make_fields())
        clock.now = END + timedelta(days=1)

        with pytest.raises(InvalidTransition):
            await service.complete(hangout.id)


class TestDeleteAndQueries:
    @pytest.mark.asyncio
    async def test_delete_cleans_calendars_then_removes_record(self, service, calendar):
        hangout = await accepted_hangout(service)

        assert await service.delete(hangout.id) is True

        assert len(calendar.deleted) == 2
        with pytest.raises(HangoutNotFoundError):
            await service.get(hangout.id)

    @pytest.mark.asyncio
    async def test_delete_proceeds_when_calendar_cleanup_fails(self, service, calendar):
        hangout = await accepted_hangout(service)
        calendar.failing_deletes.update({"alice", "bob"})

        assert await service.delete(hangout.id) is True

    @pytest.mark.asyncio
    async def test_list_for_user_buckets(self, service, clock):
        pending = await service.create(make_fields())
        upcoming = await service.create(
            make_fields(start_date=START + timedelta(days=1), end_date=END + timedelta(days=1))
        )
        await service.respond(upcoming.id, "accepted")
        declined = await service.create(
            make_fields(start_date=START + timedelta(days=2), end_date=END + timedelta(days=2))
        )
        await service.respond(declined.id, "declined")

        buckets = await service.list_for_user("bob")

        assert [h.id for h in buckets.pending] == [pending.id]
        assert [h.id for h in buckets.upcoming] == [upcoming.id]
        assert [h.id for h in buckets.past] == [declined.id]

        # Once it starts, an accepted hangout moves to past
        clock.now = START + timedelta(days=1, minutes=5)
        buckets = await service.list_for_user("alice")
        assert buckets.upcoming == []
        assert [h.id for h in buckets.past] == [declined.id, upcoming.id]

    @pytest.mark.asyncio
    async def test_persistence_failure_propagates(self, calendar, engine, dispatcher, clock):
        class BrokenRepository:
            async def list_personas(self, user_id):
                return []

            async def put_persona(self, persona):
                return None

            async def put_request(self, request):
                raise ConnectionError("store offline")

        service = HangoutLifecycleService(
            BrokenRepository(), calendar, engine, dispatcher, clock=clock
        )

        with pytest.raises(PersistenceError):
            await service.create(make_fields())

        assert dispatcher.sent == []

    @pytest.mark.asyncio
    async def test_request_locks_are_released_after_use(self, service):
        hangout = await accepted_hangout(service)
        await service.cancel(hangout.id)
        other = await service.create(
            make_fields(start_date=START + timedelta(days=1), end_date=END + timedelta(days=1))
        )
        await service.delete(other.id)

        gc.collect()

        assert hangout.id not in service._locks
        assert len(service._locks) == 0
