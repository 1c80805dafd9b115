import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple
import logging
import uuid
from uuid import UUID

from ..config import settings
from ..exceptions import InvalidTransition, NotFound
from ..models.ride import RideStatus, VehicleClass
from ..schemas.ride import Location, Ride
from ..utils.geo import validate_location
from ..utils.scheduler import ScheduledTask, TaskRegistry, schedule_once
from .event_service import EventService
from .fare_service import FareService
from .matching_service import MatchingService
from .ride_store import RideStore
from .tracking_service import ACTIVE_STATUSES, LivePositionSimulator, TrackingService

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: Dict[RideStatus, List[RideStatus]] = {
    RideStatus.SEARCHING: [RideStatus.MATCHED, RideStatus.CANCELLED],
    RideStatus.MATCHED: [RideStatus.DRIVER_EN_ROUTE, RideStatus.CANCELLED],
    RideStatus.DRIVER_EN_ROUTE: [RideStatus.ARRIVED, RideStatus.CANCELLED],
    RideStatus.ARRIVED: [RideStatus.IN_PROGRESS, RideStatus.CANCELLED],
    RideStatus.IN_PROGRESS: [RideStatus.COMPLETED, RideStatus.CANCELLED],
    RideStatus.COMPLETED: [],  # Terminal state
    RideStatus.CANCELLED: [],  # Terminal state
}

# Leg finished -> status the driver app would report next
LEG_COMPLETION = {
    RideStatus.DRIVER_EN_ROUTE: RideStatus.ARRIVED,
    RideStatus.IN_PROGRESS: RideStatus.COMPLETED,
}


def is_valid_transition(current: RideStatus, target: RideStatus) -> bool:
    return target in VALID_TRANSITIONS.get(current, [])


def parse_status(value) -> Optional[RideStatus]:
    """Resolve a status from its value or member name; None if neither matches"""
    if isinstance(value, RideStatus):
        return value
    try:
        return RideStatus(value)
    except ValueError:
        pass
    if isinstance(value, str):
        return RideStatus.__members__.get(value.upper())
    return None


class RideService:
    """Owns rides, their status machine and their timers.

    All methods are meant to run on a single event loop. Every mutation of a
    ride happens under that ride's lock, and timer callbacks re-read the ride
    before acting, so a cancel always wins over a pending match.
    """

    MATCH_TIMER = "match"

    def __init__(
        self,
        store: RideStore,
        events: Optional[EventService] = None,
        fare_service: Optional[FareService] = None,
        matching_service: Optional[MatchingService] = None,
        simulator: Optional[LivePositionSimulator] = None,
        match_delay: Optional[float] = None,
        tracking_interval: Optional[float] = None,
        auto_advance_on_arrival: Optional[bool] = None,
    ):
        self.store = store
        self.events = events or EventService()
        self.fare_service = fare_service or FareService()
        self.matching_service = matching_service or MatchingService()
        self.match_delay = settings.match_delay_seconds if match_delay is None else match_delay
        self.timers = TaskRegistry()

        if auto_advance_on_arrival is None:
            auto_advance_on_arrival = settings.auto_advance_on_arrival
        self.tracking = TrackingService(
            store,
            self.events,
            self.timers,
            simulator=simulator,
            interval=tracking_interval,
            on_leg_complete=self._complete_leg if auto_advance_on_arrival else None,
        )
        self._locks: Dict[UUID, asyncio.Lock] = {}

    @asynccontextmanager
    async def _ride_lock(self, ride_id: UUID):
        """Hold the ride's lock and yield the ride as read under it.

        Unknown ids raise NotFound before a lock exists, and the lock is
        dropped once the ride is finished, so only live rides keep one.
        """
        ride = await self.get_ride(ride_id)
        lock = self._locks.setdefault(ride_id, asyncio.Lock())
        try:
            async with lock:
                ride = await self.get_ride(ride_id)
                yield ride
        finally:
            if ride.status.is_terminal and self._locks.get(ride_id) is lock:
                del self._locks[ride_id]

    async def book_ride(
        self,
        pickup: Location,
        dropoff: Location,
        vehicle_class: VehicleClass,
        scheduled_for: Optional[datetime] = None,
        user_id: str = "anonymous",
    ) -> Ride:
        """Create a ride in SEARCHING and schedule the driver search"""
        validate_location(pickup, "pickup")
        validate_location(dropoff, "dropoff")
        vehicle_class = VehicleClass(vehicle_class)

        quote = self.fare_service.quote(pickup, dropoff, vehicle_class)
        now = datetime.now(timezone.utc)
        ride = Ride(
            id=uuid.uuid4(),
            user_id=user_id,
            pickup=pickup,
            dropoff=dropoff,
            vehicle_class=vehicle_class,
            status=RideStatus.SEARCHING,
            price=quote.price,
            distance_km=quote.distance_km,
            duration_minutes=quote.duration_minutes,
            carbon_grams=quote.carbon_grams,
            created_at=now,
            updated_at=now,
            scheduled_for=scheduled_for,
        )

        await self.store.create(ride)
        logger.info(
            f"Booked ride {ride.id} for user {user_id}: "
            f"{ride.distance_km} km, {ride.price}, {vehicle_class.value}"
        )

        await self.events.notify_ride_created(ride)
        self._schedule_match(ride.id)
        return ride

    async def get_ride(self, ride_id: UUID) -> Ride:
        ride = await self.store.get(ride_id)
        if ride is None:
            raise NotFound(ride_id)
        return ride

    async def list_user_rides(self, user_id: str, limit: int = 20, offset: int = 0) -> Tuple[List[Ride], int]:
        return await self.store.list_for_user(user_id, limit, offset)

    async def cancel_ride(self, ride_id: UUID) -> bool:
        """Cancel a ride; False if it had already finished"""
        async with self._ride_lock(ride_id) as ride:
            if ride.status.is_terminal:
                logger.info(f"Ride {ride_id} already {ride.status.value}, nothing to cancel")
                return False

            await self._set_status(ride, RideStatus.CANCELLED)
            return True

    async def advance(self, ride_id: UUID, target_status: RideStatus) -> Ride:
        """Move a ride to the next status of its lifecycle.

        The target may be a ``RideStatus``, its value (``"completed"``) or its
        name (``"COMPLETED"``). Anything else is an invalid transition.
        """
        async with self._ride_lock(ride_id) as ride:
            target = parse_status(target_status)
            if target is None:
                logger.warning(f"Unknown target status for ride {ride_id}: {target_status!r}")
                raise InvalidTransition(ride.status, target_status)
            target_status = target

            if not is_valid_transition(ride.status, target_status):
                logger.warning(f"Invalid status transition for ride {ride_id}: {ride.status} -> {target_status}")
                raise InvalidTransition(ride.status, target_status)

            if target_status == RideStatus.MATCHED:
                self.timers.cancel(ride_id, self.MATCH_TIMER)
                return await self._assign_driver(ride)

            return await self._set_status(ride, target_status)

    async def shutdown(self):
        cancelled = self.timers.shutdown()
        logger.info(f"Ride service stopped, cancelled {cancelled} timers")

    async def _set_status(self, ride: Ride, status: RideStatus) -> Ride:
        previous = ride.status
        ride.status = status
        ride.updated_at = datetime.now(timezone.utc)
        await self.store.update(ride)
        logger.info(f"Updated ride {ride.id} status {previous.value} -> {status.value}")

        if status.is_terminal:
            self.timers.cancel_all(ride.id)
            self.tracking.stop(ride.id)
        elif status in ACTIVE_STATUSES:
            self.tracking.start(ride)
        else:
            self.tracking.stop(ride.id, forget=False)

        await self.events.notify_status_changed(ride, previous)
        return ride

    async def _assign_driver(self, ride: Ride) -> Ride:
        assignment = self.matching_service.find_driver(ride)
        ride.driver_id = assignment.driver_id
        self.tracking.set_origin(ride.id, assignment.start_location)
        return await self._set_status(ride, RideStatus.MATCHED)

    def _schedule_match(self, ride_id: UUID) -> ScheduledTask:
        holder = {}

        async def on_match():
            self.timers.discard(ride_id, self.MATCH_TIMER, holder["task"])
            await self._match(ride_id)

        task = schedule_once(self.match_delay, on_match, name=f"match:{ride_id}")
        holder["task"] = task
        return self.timers.register(ride_id, self.MATCH_TIMER, task)

    async def _match(self, ride_id: UUID):
        try:
            async with self._ride_lock(ride_id) as ride:
                if ride.status != RideStatus.SEARCHING:
                    logger.info(f"Skipping driver match for ride {ride_id} ({ride.status.value})")
                    return
                await self._assign_driver(ride)
        except NotFound:
            logger.info(f"Skipping driver match for ride {ride_id} (missing)")

    async def _complete_leg(self, ride: Ride):
        target = LEG_COMPLETION.get(ride.status)
        if target is None:
            return
        try:
            await self.advance(ride.id, target)
        except (InvalidTransition, NotFound) as e:
            # Ride was cancelled or moved on while the driver was driving
            logger.info(f"Skipped auto-advance for ride {ride.id}: {e}")
