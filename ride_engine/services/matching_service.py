from dataclasses import dataclass
from typing import Optional
import logging
import uuid

from ..config import settings
from ..schemas.ride import Location, Ride
from ..utils.geo import offset

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DriverAssignment:
    driver_id: str
    start_location: Location


class MatchingService:
    """Simulated driver matching: every search succeeds with a fresh driver near the pickup"""

    def __init__(self, approach_offset_deg: Optional[float] = None):
        self.approach_offset_deg = (
            settings.driver_approach_offset_deg if approach_offset_deg is None else approach_offset_deg
        )

    def approach_origin(self, pickup: Location) -> Location:
        """Where a simulated driver starts before heading to the pickup"""
        return offset(pickup, self.approach_offset_deg)

    def find_driver(self, ride: Ride) -> DriverAssignment:
        assignment = DriverAssignment(
            driver_id=f"driver-{uuid.uuid4().hex[:12]}",
            start_location=self.approach_origin(ride.pickup),
        )
        logger.info(f"Found driver {assignment.driver_id} for ride {ride.id}")
        return assignment
