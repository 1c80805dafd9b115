from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy import select, func, desc
from typing import Dict, List, Optional, Tuple
import abc
import logging
from uuid import UUID

from ..models.ride import RideRecord
from ..schemas.ride import Location, Ride

logger = logging.getLogger(__name__)


class RideStore(abc.ABC):
    """Persistence collaborator: ride id -> Ride"""

    @abc.abstractmethod
    async def create(self, ride: Ride) -> Ride:
        ...

    @abc.abstractmethod
    async def update(self, ride: Ride) -> Ride:
        ...

    @abc.abstractmethod
    async def get(self, ride_id: UUID) -> Optional[Ride]:
        ...

    @abc.abstractmethod
    async def list_for_user(self, user_id: str, limit: int = 20, offset: int = 0) -> Tuple[List[Ride], int]:
        ...


class InMemoryRideStore(RideStore):
    """Process-local store; returns copies so callers never share a mutable Ride"""

    def __init__(self):
        self._rides: Dict[UUID, Ride] = {}

    async def create(self, ride: Ride) -> Ride:
        if ride.id in self._rides:
            raise ValueError(f"Ride {ride.id} already exists")
        self._rides[ride.id] = ride.model_copy(deep=True)
        return ride

    async def update(self, ride: Ride) -> Ride:
        if ride.id not in self._rides:
            raise KeyError(ride.id)
        self._rides[ride.id] = ride.model_copy(deep=True)
        return ride

    async def get(self, ride_id: UUID) -> Optional[Ride]:
        ride = self._rides.get(ride_id)
        return ride.model_copy(deep=True) if ride else None

    async def list_for_user(self, user_id: str, limit: int = 20, offset: int = 0) -> Tuple[List[Ride], int]:
        rides = sorted(
            (ride for ride in self._rides.values() if ride.user_id == user_id),
            key=lambda ride: ride.created_at,
            reverse=True,
        )
        page = [ride.model_copy(deep=True) for ride in rides[offset:offset + limit]]
        return page, len(rides)

    def __len__(self):
        return len(self._rides)


def _to_record_values(ride: Ride) -> dict:
    return {
        "user_id": ride.user_id,
        "driver_id": ride.driver_id,
        "pickup_latitude": ride.pickup.latitude,
        "pickup_longitude": ride.pickup.longitude,
        "pickup_address": ride.pickup.address,
        "dropoff_latitude": ride.dropoff.latitude,
        "dropoff_longitude": ride.dropoff.longitude,
        "dropoff_address": ride.dropoff.address,
        "price": ride.price,
        "distance_km": ride.distance_km,
        "duration_minutes": ride.duration_minutes,
        "carbon_grams": ride.carbon_grams,
        "status": ride.status,
        "vehicle_class": ride.vehicle_class,
        "created_at": ride.created_at,
        "updated_at": ride.updated_at,
        "scheduled_for": ride.scheduled_for,
    }


def _from_record(record: RideRecord) -> Ride:
    return Ride(
        id=record.id,
        user_id=record.user_id,
        driver_id=record.driver_id,
        pickup=Location(
            latitude=record.pickup_latitude,
            longitude=record.pickup_longitude,
            address=record.pickup_address,
        ),
        dropoff=Location(
            latitude=record.dropoff_latitude,
            longitude=record.dropoff_longitude,
            address=record.dropoff_address,
        ),
        vehicle_class=record.vehicle_class,
        status=record.status,
        price=record.price,
        distance_km=record.distance_km,
        duration_minutes=record.duration_minutes,
        carbon_grams=record.carbon_grams,
        created_at=record.created_at,
        updated_at=record.updated_at,
        scheduled_for=record.scheduled_for,
    )


class SqlAlchemyRideStore(RideStore):
    """Ride rows through an async SQLAlchemy session maker"""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def create(self, ride: Ride) -> Ride:
        async with self.session_factory() as session:
            try:
                session.add(RideRecord(id=ride.id, **_to_record_values(ride)))
                await session.commit()
                logger.info(f"Persisted ride {ride.id} for user {ride.user_id}")
                return ride
            except Exception as e:
                await session.rollback()
                logger.error(f"Failed to persist ride {ride.id}: {e}")
                raise

    async def update(self, ride: Ride) -> Ride:
        async with self.session_factory() as session:
            try:
                record = await session.get(RideRecord, ride.id)
                if record is None:
                    raise KeyError(ride.id)
                for key, value in _to_record_values(ride).items():
                    setattr(record, key, value)
                await session.commit()
                return ride
            except Exception as e:
                await session.rollback()
                logger.error(f"Failed to update ride {ride.id}: {e}")
                raise

    async def get(self, ride_id: UUID) -> Optional[Ride]:
        async with self.session_factory() as session:
            record = await session.get(RideRecord, ride_id)
            return _from_record(record) if record else None

    async def list_for_user(self, user_id: str, limit: int = 20, offset: int = 0) -> Tuple[List[Ride], int]:
        async with self.session_factory() as session:
            stmt = (
                select(RideRecord)
                .where(RideRecord.user_id == user_id)
                .order_by(desc(RideRecord.created_at))
                .limit(limit)
                .offset(offset)
            )
            result = await session.execute(stmt)
            records = result.scalars().all()

            count_stmt = select(func.count()).select_from(RideRecord).where(RideRecord.user_id == user_id)
            total = (await session.execute(count_stmt)).scalar_one()

            return [_from_record(record) for record in records], total
