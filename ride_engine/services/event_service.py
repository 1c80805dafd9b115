import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional
from datetime import datetime, timezone
import uuid

from ..models.ride import RideStatus
from ..schemas.ride import PositionUpdate, Ride

logger = logging.getLogger(__name__)

EventHandler = Callable[[str, Dict[str, Any]], Awaitable[None]]


class EventService:
    """Publish ride events to subscribed collaborators (notifications, payments, UI)"""

    # Event channels
    RIDE_EVENTS_CHANNEL = "ride-events"
    PAYMENT_EVENTS_CHANNEL = "payment-events"
    POSITION_EVENTS_CHANNEL = "position-events"

    def __init__(self):
        self._handlers: List[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register ``handler(channel, event)``; returns an unsubscribe callable"""
        self._handlers.append(handler)

        def unsubscribe():
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    async def publish(self, channel: str, event_type: str, event_data: Dict[str, Any]) -> Dict[str, Any]:
        event = {
            "event_id": str(uuid.uuid4()),
            "event_type": event_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": "ride-engine",
            "data": event_data,
        }

        for handler in list(self._handlers):
            try:
                await handler(channel, event)
            except Exception as e:
                # A failing collaborator must not undo the ride operation
                logger.error(f"Event handler failed for {event_type} on {channel}: {e}")

        logger.debug(f"Published {event_type} to {channel}")
        return event

    async def publish_ride_event(self, event_type: str, event_data: Dict[str, Any]):
        return await self.publish(self.RIDE_EVENTS_CHANNEL, event_type, event_data)

    async def publish_payment_event(self, event_type: str, event_data: Dict[str, Any]):
        return await self.publish(self.PAYMENT_EVENTS_CHANNEL, event_type, event_data)

    # Specific event publishers for common scenarios

    async def notify_ride_created(self, ride: Ride):
        """New ride booked; the fare is locked from here on"""
        await self.publish_ride_event("ride_created", ride.model_dump(mode="json"))
        await self.publish_payment_event(
            "fare_locked",
            {
                "ride_id": str(ride.id),
                "user_id": ride.user_id,
                "amount": str(ride.price),
                "vehicle_class": ride.vehicle_class.value,
            },
        )

    async def notify_status_changed(self, ride: Ride, previous: Optional[RideStatus]):
        await self.publish_ride_event(
            "ride_status_changed",
            {
                "ride_id": str(ride.id),
                "user_id": ride.user_id,
                "driver_id": ride.driver_id,
                "previous_status": previous.value if previous else None,
                "status": ride.status.value,
            },
        )

    async def notify_position(self, update: PositionUpdate):
        await self.publish(self.POSITION_EVENTS_CHANNEL, "position_updated", update.model_dump(mode="json"))
