import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Union

from ..config import settings
from ..models.ride import VehicleClass
from ..schemas.ride import FareQuote, Location
from ..utils.geo import distance_km

logger = logging.getLogger(__name__)

# Per-km rate and emission multiplier on the baseline g/km
BASE_RATES: Dict[VehicleClass, Decimal] = {
    VehicleClass.ECONOMY: Decimal("1.2"),
    VehicleClass.STANDARD: Decimal("1.5"),
    VehicleClass.PREMIUM: Decimal("2.2"),
    VehicleClass.ELECTRIC: Decimal("1.8"),
    VehicleClass.HYBRID: Decimal("1.6"),
    VehicleClass.SHARED: Decimal("0.9"),
}

EMISSION_FACTORS: Dict[VehicleClass, Decimal] = {
    VehicleClass.ECONOMY: Decimal("0.9"),
    VehicleClass.STANDARD: Decimal("1.0"),
    VehicleClass.PREMIUM: Decimal("1.5"),
    VehicleClass.ELECTRIC: Decimal("0.2"),
    VehicleClass.HYBRID: Decimal("0.6"),
    VehicleClass.SHARED: Decimal("0.5"),
}

CENTS = Decimal("0.01")
TENTHS = Decimal("0.1")
UNITS = Decimal("1")


def round_half_up(value: Union[Decimal, float], step: Decimal = UNITS) -> Decimal:
    return Decimal(str(value)).quantize(step, rounding=ROUND_HALF_UP)


class FareService:
    """Fare, duration and carbon rules. Pure and deterministic."""

    def __init__(self, base_fare: float = None, baseline_emission: int = None):
        self.base_fare = Decimal(str(settings.base_fare if base_fare is None else base_fare))
        self.baseline_emission = Decimal(
            str(settings.baseline_emission_g_per_km if baseline_emission is None else baseline_emission)
        )

    def base_rate(self, vehicle_class: VehicleClass) -> Decimal:
        rate = BASE_RATES.get(vehicle_class)
        if rate is None:
            logger.info(f"No rate for {vehicle_class}, using standard rate")
            return BASE_RATES[VehicleClass.STANDARD]
        return rate

    def emission_factor(self, vehicle_class: VehicleClass) -> Decimal:
        factor = EMISSION_FACTORS.get(vehicle_class)
        if factor is None:
            logger.info(f"No emission factor for {vehicle_class}, using standard factor")
            return EMISSION_FACTORS[VehicleClass.STANDARD]
        return factor

    def calculate_distance(self, pickup: Location, dropoff: Location) -> float:
        """Trip distance in km, one decimal"""
        return float(round_half_up(distance_km(pickup, dropoff), TENTHS))

    def calculate_duration(self, distance: float) -> int:
        """Estimated trip duration in minutes"""
        return int(round_half_up(Decimal(str(distance)) * 2 + 5))

    def calculate_price(self, distance: float, vehicle_class: VehicleClass) -> Decimal:
        """Fare locked at booking time"""
        price = self.base_rate(vehicle_class) * Decimal(str(distance)) + self.base_fare
        return round_half_up(price, CENTS)

    def calculate_carbon(self, distance: float, vehicle_class: VehicleClass) -> int:
        """Grams of CO2 for the trip"""
        grams = Decimal(str(distance)) * self.baseline_emission * self.emission_factor(vehicle_class)
        return int(round_half_up(grams))

    def quote(self, pickup: Location, dropoff: Location, vehicle_class: VehicleClass) -> FareQuote:
        distance = self.calculate_distance(pickup, dropoff)
        return FareQuote(
            distance_km=distance,
            duration_minutes=self.calculate_duration(distance),
            price=self.calculate_price(distance, vehicle_class),
            carbon_grams=self.calculate_carbon(distance, vehicle_class),
        )
