from sqlalchemy import Column, String, DECIMAL, TIMESTAMP, Float, Integer, Text, Enum, Uuid
from sqlalchemy.sql import func
import uuid
import enum
from ..database import Base


class RideStatus(str, enum.Enum):
    SEARCHING = "searching"
    MATCHED = "matched"
    DRIVER_EN_ROUTE = "driver_en_route"
    ARRIVED = "arrived"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RideStatus.COMPLETED, RideStatus.CANCELLED)


class VehicleClass(str, enum.Enum):
    ECONOMY = "economy"
    STANDARD = "standard"
    PREMIUM = "premium"
    ELECTRIC = "electric"
    HYBRID = "hybrid"
    SHARED = "shared"
    # Flat-rate product label, priced through the standard fallback
    AIRPORT = "airport"


class RideRecord(Base):
    __tablename__ = "rides"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(100), nullable=False, index=True)
    driver_id = Column(String(100), nullable=True)

    # Endpoints
    pickup_latitude = Column(Float, nullable=False)
    pickup_longitude = Column(Float, nullable=False)
    pickup_address = Column(Text, nullable=True)
    dropoff_latitude = Column(Float, nullable=False)
    dropoff_longitude = Column(Float, nullable=False)
    dropoff_address = Column(Text, nullable=True)

    # Locked fare quote
    price = Column(DECIMAL(10, 2), nullable=False)
    distance_km = Column(Float, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    carbon_grams = Column(Integer, nullable=False)

    # Ride details
    status = Column(Enum(RideStatus), nullable=False, default=RideStatus.SEARCHING)
    vehicle_class = Column(Enum(VehicleClass), nullable=False, default=VehicleClass.STANDARD)

    # Timestamps
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())
    scheduled_for = Column(TIMESTAMP(timezone=True), nullable=True)

    def __repr__(self):
        return f"<RideRecord(id={self.id}, status={self.status}, user_id={self.user_id})>"
