"""Live driver position simulation for rides that are on the road.

While a ride is ``driver_en_route`` the simulated driver moves from its
starting point to the pickup; while ``in_progress`` it moves from the pickup
to the dropoff. Progress along a leg only ever grows, one fixed step per
tick, so the marker never jumps backwards.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Awaitable, Callable, Dict, Optional, Tuple
import logging
from uuid import UUID

from ..config import settings
from ..models.ride import RideStatus
from ..schemas.ride import Location, PositionUpdate, Ride
from ..utils.geo import distance_km, interpolate, offset
from ..utils.scheduler import TaskRegistry, schedule_repeating
from .event_service import EventService
from .fare_service import round_half_up
from .ride_store import RideStore

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (RideStatus.DRIVER_EN_ROUTE, RideStatus.IN_PROGRESS)

LegCompleteCallback = Callable[[Ride], Awaitable[None]]


class LivePositionSimulator:
    def __init__(
        self,
        progress_step: Optional[float] = None,
        average_speed_kmh: Optional[float] = None,
        approach_offset_deg: Optional[float] = None,
    ):
        self.progress_step = settings.tracking_progress_step if progress_step is None else progress_step
        self.average_speed_kmh = settings.average_speed_kmh if average_speed_kmh is None else average_speed_kmh
        self.approach_offset_deg = (
            settings.driver_approach_offset_deg if approach_offset_deg is None else approach_offset_deg
        )
        if self.progress_step <= 0:
            raise ValueError("progress_step must be positive")

    def leg_for(self, ride: Ride, origin: Optional[Location] = None) -> Optional[Tuple[Location, Location]]:
        """Endpoints of the leg the driver is currently on"""
        if ride.status == RideStatus.DRIVER_EN_ROUTE:
            start = origin or offset(ride.pickup, self.approach_offset_deg)
            return start, ride.pickup
        if ride.status == RideStatus.IN_PROGRESS:
            return ride.pickup, ride.dropoff
        return None

    def eta_minutes(self, remaining_km: float) -> int:
        minutes_per_km = Decimal("60") / Decimal(str(self.average_speed_kmh))
        return int(round_half_up(Decimal(str(remaining_km)) * minutes_per_km))

    def tick(
        self,
        ride: Ride,
        previous: Optional[PositionUpdate] = None,
        origin: Optional[Location] = None,
    ) -> Optional[PositionUpdate]:
        """Next position for the ride, or None if it is not on the road"""
        leg = self.leg_for(ride, origin)
        if leg is None:
            return None
        start, end = leg

        if previous is not None and previous.ride_id == ride.id and previous.status == ride.status:
            progress = min(1.0, round(previous.progress + self.progress_step, 9))
        else:
            progress = 0.0

        location = interpolate(start, end, progress)
        remaining = distance_km(location, end)
        eta = self.eta_minutes(remaining)

        return PositionUpdate(
            ride_id=ride.id,
            status=ride.status,
            location=location,
            eta_text=f"{eta} min",
            eta_minutes=eta,
            progress=progress,
            remaining_km=round(remaining, 3),
            timestamp=datetime.now(timezone.utc),
        )


class TrackingService:
    """Runs the simulator on a fixed tick for every ride on the road"""

    TIMER_KIND = "tracking"

    def __init__(
        self,
        store: RideStore,
        events: EventService,
        registry: TaskRegistry,
        simulator: Optional[LivePositionSimulator] = None,
        interval: Optional[float] = None,
        on_leg_complete: Optional[LegCompleteCallback] = None,
    ):
        self.store = store
        self.events = events
        self.registry = registry
        self.simulator = simulator or LivePositionSimulator()
        self.interval = settings.tracking_interval_seconds if interval is None else interval
        self.on_leg_complete = on_leg_complete
        self._positions: Dict[UUID, PositionUpdate] = {}
        self._origins: Dict[UUID, Location] = {}

    def set_origin(self, ride_id: UUID, location: Location):
        self._origins[ride_id] = location

    def latest(self, ride_id: UUID) -> Optional[PositionUpdate]:
        return self._positions.get(ride_id)

    def is_tracking(self, ride_id: UUID) -> bool:
        task = self.registry.get(ride_id, self.TIMER_KIND)
        return task is not None and not task.done

    def start(self, ride: Ride):
        """Begin ticking for the ride, replacing any earlier ticker"""
        if ride.status not in ACTIVE_STATUSES:
            logger.warning(f"Not tracking ride {ride.id} in status {ride.status}")
            return None

        ride_id = ride.id
        holder = {}

        async def on_tick():
            return await self._tick(ride_id, holder["task"])

        task = schedule_repeating(self.interval, on_tick, name=f"tracking:{ride_id}")
        holder["task"] = task
        self.registry.register(ride_id, self.TIMER_KIND, task)
        logger.info(f"Started tracking ride {ride_id} ({ride.status.value})")
        return task

    def stop(self, ride_id: UUID, forget: bool = True):
        self.registry.cancel(ride_id, self.TIMER_KIND)
        if forget:
            self._positions.pop(ride_id, None)
            self._origins.pop(ride_id, None)

    async def _tick(self, ride_id: UUID, task) -> bool:
        ride = await self.store.get(ride_id)
        if ride is None or ride.status not in ACTIVE_STATUSES:
            logger.info(f"Ride {ride_id} left the road, stopping tracking")
            self.registry.discard(ride_id, self.TIMER_KIND, task)
            if ride is None or ride.status.is_terminal:
                self._positions.pop(ride_id, None)
                self._origins.pop(ride_id, None)
            return False

        update = self.simulator.tick(ride, self._positions.get(ride_id), self._origins.get(ride_id))
        self._positions[ride_id] = update
        await self.events.notify_position(update)

        if update.progress < 1.0:
            return True

        # Leave the registry first so the advance does not cancel this ticker mid-callback
        self.registry.discard(ride_id, self.TIMER_KIND, task)
        if self.on_leg_complete is not None:
            await self.on_leg_complete(ride)
        else:
            # Parked at the end of the leg; the final position stays readable
            logger.info(f"Ride {ride_id} finished its {ride.status.value} leg, waiting for the next status")
        return False
