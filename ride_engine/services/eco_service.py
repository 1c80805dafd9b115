from decimal import Decimal
from typing import Iterable, List
import logging

from ..config import settings
from ..models.ride import RideStatus, VehicleClass
from ..schemas.ride import EcoImpactResponse, EcoLevel, Ride
from .fare_service import CENTS, TENTHS, round_half_up
from .ride_store import RideStore

logger = logging.getLogger(__name__)

ECO_VEHICLE_CLASSES = (VehicleClass.ELECTRIC, VehicleClass.HYBRID, VehicleClass.SHARED)

# Grams of CO2 one tree absorbs per year
TREE_ABSORPTION_G = 21000

# (upper bound in kg, level name)
ECO_LEVELS = [
    (1, "Eco Starter"),
    (5, "Green Explorer"),
    (10, "Eco Warrior"),
    (25, "Climate Champion"),
    (50, "Earth Guardian"),
]
TOP_LEVEL = "Climate Hero"


def eco_level(carbon_saved_kg: float) -> EcoLevel:
    for bound, name in ECO_LEVELS:
        if carbon_saved_kg < bound:
            return EcoLevel(level=name, next_milestone_kg=bound, progress_kg=carbon_saved_kg)
    return EcoLevel(level=TOP_LEVEL, next_milestone_kg=carbon_saved_kg, progress_kg=carbon_saved_kg)


class EcoService:
    """Carbon statistics over a user's completed rides"""

    def __init__(self, store: RideStore, baseline_emission: int = None):
        self.store = store
        self.baseline_emission = (
            settings.baseline_emission_g_per_km if baseline_emission is None else baseline_emission
        )

    def summarize(self, rides: Iterable[Ride]) -> EcoImpactResponse:
        completed = [ride for ride in rides if ride.status == RideStatus.COMPLETED]
        eco_rides = [ride for ride in completed if ride.vehicle_class in ECO_VEHICLE_CLASSES]

        total_distance = sum(Decimal(str(ride.distance_km)) for ride in completed)
        emitted_g = sum(ride.carbon_grams for ride in completed)
        # Saving versus the same trip in a standard car
        saved_g = sum(
            Decimal(str(ride.distance_km)) * self.baseline_emission - ride.carbon_grams
            for ride in eco_rides
        )

        percentage = round_half_up(Decimal(len(eco_rides) * 100) / len(completed)) if completed else 0
        saved_kg = float(round_half_up(Decimal(saved_g) / 1000, CENTS))

        return EcoImpactResponse(
            total_rides=len(completed),
            total_distance_km=float(round_half_up(total_distance, TENTHS)),
            carbon_emitted_kg=float(round_half_up(Decimal(emitted_g) / 1000, CENTS)),
            carbon_saved_kg=saved_kg,
            eco_rides_percentage=int(percentage),
            trees_equivalent=int(round_half_up(Decimal(saved_g) / TREE_ABSORPTION_G)),
            level=eco_level(saved_kg),
        )

    async def user_impact(self, user_id: str, page_size: int = 200) -> EcoImpactResponse:
        rides: List[Ride] = []
        offset = 0
        while True:
            page, total = await self.store.list_for_user(user_id, limit=page_size, offset=offset)
            rides.extend(page)
            offset += len(page)
            if not page or offset >= total:
                break

        logger.info(f"Computed eco impact for user {user_id} over {len(rides)} rides")
        return self.summarize(rides)
