from pydantic import BaseModel, Field, UUID4
from typing import Optional
from datetime import datetime
from decimal import Decimal
from ..models.ride import RideStatus, VehicleClass


class Location(BaseModel):
    latitude: float
    longitude: float
    address: Optional[str] = None

    class Config:
        frozen = True


class FareQuote(BaseModel):
    distance_km: float
    duration_minutes: int
    price: Decimal
    carbon_grams: int


class Ride(BaseModel):
    id: UUID4
    user_id: str
    driver_id: Optional[str] = None
    pickup: Location
    dropoff: Location
    vehicle_class: VehicleClass
    status: RideStatus = RideStatus.SEARCHING
    price: Decimal
    distance_km: float
    duration_minutes: int
    carbon_grams: int
    created_at: datetime
    updated_at: datetime
    scheduled_for: Optional[datetime] = None

    class Config:
        from_attributes = True


class PositionUpdate(BaseModel):
    ride_id: UUID4
    status: RideStatus
    location: Location
    eta_text: str
    eta_minutes: int
    progress: float = Field(..., ge=0.0, le=1.0)
    remaining_km: float
    timestamp: datetime


# Request schemas
class FareQuoteRequest(BaseModel):
    pickup: Location
    dropoff: Location
    vehicle_class: VehicleClass = VehicleClass.STANDARD


class RideBookRequest(FareQuoteRequest):
    scheduled_for: Optional[datetime] = None


class RideStatusUpdateRequest(BaseModel):
    status: RideStatus


# Response schemas
class RideCreateResponse(BaseModel):
    ride: Ride
    message: str = "Ride booked successfully. Finding a nearby driver..."


class RideCancelResponse(BaseModel):
    ride_id: UUID4
    cancelled: bool
    status: RideStatus


class RideListResponse(BaseModel):
    rides: list[Ride]
    total: int
    limit: int
    offset: int


class EcoLevel(BaseModel):
    level: str
    next_milestone_kg: float
    progress_kg: float


class EcoImpactResponse(BaseModel):
    total_rides: int
    total_distance_km: float
    carbon_emitted_kg: float
    carbon_saved_kg: float
    eco_rides_percentage: int
    trees_equivalent: int
    level: EcoLevel
