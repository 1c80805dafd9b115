import pytest

from ride_engine.schemas.ride import Location
from ride_engine.services.event_service import EventService
from ride_engine.services.ride_service import RideService
from ride_engine.services.ride_store import InMemoryRideStore
from ride_engine.services.tracking_service import LivePositionSimulator

MATCH_DELAY = 0.05
TRACKING_INTERVAL = 0.01


@pytest.fixture
def pickup():
    return Location(latitude=48.8566, longitude=2.3522, address="Hotel de Ville, Paris")


@pytest.fixture
def dropoff():
    return Location(latitude=48.8666, longitude=2.3522, address="Rue de Turbigo, Paris")


@pytest.fixture
def store():
    return InMemoryRideStore()


@pytest.fixture
def recorded_events():
    return []


@pytest.fixture
def events(recorded_events):
    service = EventService()

    async def record(channel, event):
        recorded_events.append((channel, event))

    service.subscribe(record)
    return service


@pytest.fixture
async def ride_service(store, events):
    service = RideService(
        store,
        events=events,
        match_delay=MATCH_DELAY,
        tracking_interval=TRACKING_INTERVAL,
        simulator=LivePositionSimulator(progress_step=0.1),
        auto_advance_on_arrival=False,
    )
    yield service
    await service.shutdown()
