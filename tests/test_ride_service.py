import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from ride_engine.exceptions import InvalidLocation, InvalidTransition, NotFound
from ride_engine.models.ride import RideStatus, VehicleClass
from ride_engine.schemas.ride import Location
from ride_engine.services.ride_service import VALID_TRANSITIONS, is_valid_transition

LIFECYCLE = [
    RideStatus.SEARCHING,
    RideStatus.MATCHED,
    RideStatus.DRIVER_EN_ROUTE,
    RideStatus.ARRIVED,
    RideStatus.IN_PROGRESS,
    RideStatus.COMPLETED,
]


async def wait_for_match(service):
    await asyncio.sleep(service.match_delay * 3)


def status_history(recorded_events, ride_id):
    return [
        event["data"]["status"]
        for _, event in recorded_events
        if event["event_type"] == "ride_status_changed" and event["data"]["ride_id"] == str(ride_id)
    ]


async def test_book_electric_ride_end_to_end(ride_service, pickup, dropoff):
    ride = await ride_service.book_ride(pickup, dropoff, VehicleClass.ELECTRIC, user_id="user-1")

    assert ride.status == RideStatus.SEARCHING
    assert ride.distance_km == 1.1
    assert ride.price == Decimal("4.48")
    assert ride.carbon_grams == 26
    assert ride.duration_minutes == 7
    assert ride.driver_id is None

    await wait_for_match(ride_service)

    matched = await ride_service.get_ride(ride.id)
    assert matched.status == RideStatus.MATCHED
    assert matched.driver_id is not None
    # Fare is locked at booking
    assert matched.price == ride.price
    assert matched.carbon_grams == ride.carbon_grams


async def test_booking_returns_before_match(ride_service, pickup, dropoff):
    ride = await ride_service.book_ride(pickup, dropoff, VehicleClass.STANDARD)
    stored = await ride_service.get_ride(ride.id)
    assert stored.status == RideStatus.SEARCHING
    assert ride_service.timers.get(ride.id, ride_service.MATCH_TIMER) is not None


async def test_booking_keeps_schedule(ride_service, pickup, dropoff):
    later = datetime.now(timezone.utc) + timedelta(hours=2)
    ride = await ride_service.book_ride(pickup, dropoff, VehicleClass.SHARED, scheduled_for=later)
    assert (await ride_service.get_ride(ride.id)).scheduled_for == later


@pytest.mark.parametrize("bad", [
    None,
    Location(latitude=float("nan"), longitude=2.35),
    Location(latitude=48.85, longitude=float("inf")),
])
async def test_booking_rejects_invalid_locations(ride_service, store, pickup, bad):
    with pytest.raises(InvalidLocation):
        await ride_service.book_ride(pickup, bad, VehicleClass.STANDARD)
    with pytest.raises(InvalidLocation):
        await ride_service.book_ride(bad, pickup, VehicleClass.STANDARD)
    assert len(store) == 0


async def test_booking_emits_created_and_fare_locked(ride_service, recorded_events, pickup, dropoff):
    ride = await ride_service.book_ride(pickup, dropoff, VehicleClass.PREMIUM, user_id="user-7")

    types = [(channel, event["event_type"]) for channel, event in recorded_events]
    assert ("ride-events", "ride_created") in types
    assert ("payment-events", "fare_locked") in types

    fare_event = next(event for _, event in recorded_events if event["event_type"] == "fare_locked")
    assert fare_event["data"] == {
        "ride_id": str(ride.id),
        "user_id": "user-7",
        "amount": "4.92",
        "vehicle_class": "premium",
    }


async def test_cancel_is_idempotent(ride_service, recorded_events, pickup, dropoff):
    ride = await ride_service.book_ride(pickup, dropoff, VehicleClass.STANDARD)

    assert await ride_service.cancel_ride(ride.id) is True
    cancelled = await ride_service.get_ride(ride.id)

    assert await ride_service.cancel_ride(ride.id) is False
    again = await ride_service.get_ride(ride.id)

    assert again.status == RideStatus.CANCELLED
    assert again.updated_at == cancelled.updated_at
    assert status_history(recorded_events, ride.id) == ["cancelled"]


async def test_cancel_before_match_prevents_resurrection(ride_service, pickup, dropoff):
    ride = await ride_service.book_ride(pickup, dropoff, VehicleClass.ECONOMY)
    await ride_service.cancel_ride(ride.id)

    await wait_for_match(ride_service)

    ride = await ride_service.get_ride(ride.id)
    assert ride.status == RideStatus.CANCELLED
    assert ride.driver_id is None
    assert ride_service.timers.active_count(ride.id) == 0


async def test_cancel_completed_ride_is_noop(ride_service, pickup, dropoff):
    ride = await ride_service.book_ride(pickup, dropoff, VehicleClass.STANDARD)
    for status in LIFECYCLE[1:]:
        await ride_service.advance(ride.id, status)

    assert await ride_service.cancel_ride(ride.id) is False
    assert (await ride_service.get_ride(ride.id)).status == RideStatus.COMPLETED


async def test_cancel_unknown_ride(ride_service):
    with pytest.raises(NotFound):
        await ride_service.cancel_ride(uuid.uuid4())


async def test_illegal_transition_is_rejected(ride_service, pickup, dropoff):
    ride = await ride_service.book_ride(pickup, dropoff, VehicleClass.STANDARD)

    with pytest.raises(InvalidTransition) as exc_info:
        await ride_service.advance(ride.id, RideStatus.COMPLETED)

    assert exc_info.value.current == RideStatus.SEARCHING
    assert exc_info.value.target == RideStatus.COMPLETED
    assert (await ride_service.get_ride(ride.id)).status == RideStatus.SEARCHING


async def test_advance_unknown_ride(ride_service):
    with pytest.raises(NotFound):
        await ride_service.advance(uuid.uuid4(), RideStatus.MATCHED)


async def test_locks_are_not_kept_for_unknown_or_finished_rides(ride_service, pickup, dropoff):
    for _ in range(200):
        with pytest.raises(NotFound):
            await ride_service.cancel_ride(uuid.uuid4())
        with pytest.raises(NotFound):
            await ride_service.advance(uuid.uuid4(), RideStatus.MATCHED)
    assert len(ride_service._locks) == 0

    ride = await ride_service.book_ride(pickup, dropoff, VehicleClass.STANDARD)
    await ride_service.advance(ride.id, RideStatus.MATCHED)
    assert len(ride_service._locks) == 1

    assert await ride_service.cancel_ride(ride.id) is True
    assert await ride_service.cancel_ride(ride.id) is False
    with pytest.raises(InvalidTransition):
        await ride_service.advance(ride.id, RideStatus.DRIVER_EN_ROUTE)
    assert len(ride_service._locks) == 0


async def test_advance_accepts_status_names(ride_service, pickup, dropoff):
    ride = await ride_service.book_ride(pickup, dropoff, VehicleClass.STANDARD)

    with pytest.raises(InvalidTransition) as exc_info:
        await ride_service.advance(ride.id, "COMPLETED")
    assert exc_info.value.current == RideStatus.SEARCHING
    assert exc_info.value.target == RideStatus.COMPLETED

    matched = await ride_service.advance(ride.id, "MATCHED")
    assert matched.status == RideStatus.MATCHED
    assert (await ride_service.advance(ride.id, "driver_en_route")).status == RideStatus.DRIVER_EN_ROUTE


@pytest.mark.parametrize("target", ["teleported", "", 42, None])
async def test_advance_to_unknown_status_is_invalid_transition(ride_service, pickup, dropoff, target):
    ride = await ride_service.book_ride(pickup, dropoff, VehicleClass.STANDARD)

    with pytest.raises(InvalidTransition) as exc_info:
        await ride_service.advance(ride.id, target)

    assert exc_info.value.target == target
    assert (await ride_service.get_ride(ride.id)).status == RideStatus.SEARCHING


async def test_no_transitions_out_of_terminal_states(ride_service, pickup, dropoff):
    ride = await ride_service.book_ride(pickup, dropoff, VehicleClass.STANDARD)
    await ride_service.cancel_ride(ride.id)

    for status in RideStatus:
        with pytest.raises(InvalidTransition):
            await ride_service.advance(ride.id, status)


async def test_full_lifecycle_is_monotonic(ride_service, recorded_events, pickup, dropoff):
    ride = await ride_service.book_ride(pickup, dropoff, VehicleClass.HYBRID)
    await wait_for_match(ride_service)

    for status in LIFECYCLE[2:]:
        ride = await ride_service.advance(ride.id, status)
        assert ride.status == status

    assert status_history(recorded_events, ride.id) == [status.value for status in LIFECYCLE[1:]]
    assert ride_service.timers.active_count(ride.id) == 0


async def test_manual_match_replaces_pending_timer(ride_service, recorded_events, pickup, dropoff):
    ride = await ride_service.book_ride(pickup, dropoff, VehicleClass.STANDARD)

    matched = await ride_service.advance(ride.id, RideStatus.MATCHED)
    assert matched.driver_id is not None

    await wait_for_match(ride_service)

    assert (await ride_service.get_ride(ride.id)).driver_id == matched.driver_id
    assert status_history(recorded_events, ride.id) == ["matched"]


async def test_advance_to_cancelled_goes_through_cancel_path(ride_service, pickup, dropoff):
    ride = await ride_service.book_ride(pickup, dropoff, VehicleClass.STANDARD)
    await wait_for_match(ride_service)
    await ride_service.advance(ride.id, RideStatus.DRIVER_EN_ROUTE)

    cancelled = await ride_service.advance(ride.id, RideStatus.CANCELLED)

    assert cancelled.status == RideStatus.CANCELLED
    assert not ride_service.tracking.is_tracking(ride.id)
    assert ride_service.timers.active_count(ride.id) == 0


async def test_concurrent_cancels_change_state_once(ride_service, pickup, dropoff):
    ride = await ride_service.book_ride(pickup, dropoff, VehicleClass.STANDARD)

    results = await asyncio.gather(*(ride_service.cancel_ride(ride.id) for _ in range(5)))

    assert sorted(results) == [False, False, False, False, True]


async def test_ride_history_is_newest_first(ride_service, pickup, dropoff):
    first = await ride_service.book_ride(pickup, dropoff, VehicleClass.STANDARD, user_id="alice")
    await asyncio.sleep(0.001)
    second = await ride_service.book_ride(dropoff, pickup, VehicleClass.ELECTRIC, user_id="alice")
    await ride_service.book_ride(pickup, dropoff, VehicleClass.STANDARD, user_id="bob")

    rides, total = await ride_service.list_user_rides("alice")

    assert total == 2
    assert [ride.id for ride in rides] == [second.id, first.id]


def test_transition_table_is_linear_with_cancel():
    for current, targets in VALID_TRANSITIONS.items():
        if current.is_terminal:
            assert targets == []
            continue
        assert RideStatus.CANCELLED in targets
        following = LIFECYCLE[LIFECYCLE.index(current) + 1]
        assert is_valid_transition(current, following)
        assert len(targets) == 2
