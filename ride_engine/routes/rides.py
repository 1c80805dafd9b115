from fastapi import APIRouter, Depends, HTTPException, Request, status, Header
from typing import Optional
import logging
from uuid import UUID

from ..exceptions import InvalidLocation, InvalidTransition, NotFound
from ..schemas.ride import (
    EcoImpactResponse,
    FareQuote,
    FareQuoteRequest,
    PositionUpdate,
    Ride,
    RideBookRequest,
    RideCancelResponse,
    RideCreateResponse,
    RideListResponse,
    RideStatusUpdateRequest,
)
from ..services.eco_service import EcoService
from ..services.ride_service import RideService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/rides", tags=["rides"])


def get_ride_service(request: Request) -> RideService:
    return request.app.state.ride_service


def get_eco_service(request: Request) -> EcoService:
    return request.app.state.eco_service


# Authentication is handled upstream; the gateway forwards the caller id
async def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller id forwarded by the gateway"""
    return x_user_id or "anonymous"


@router.post("/quote", response_model=FareQuote)
async def quote_fare(
    quote_data: FareQuoteRequest,
    ride_service: RideService = Depends(get_ride_service),
):
    """Price a trip without booking it"""
    try:
        return ride_service.fare_service.quote(
            quote_data.pickup, quote_data.dropoff, quote_data.vehicle_class
        )
    except InvalidLocation as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to quote fare: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to quote fare"
        )


@router.post("/book", response_model=RideCreateResponse, status_code=status.HTTP_201_CREATED)
async def book_ride(
    ride_data: RideBookRequest,
    ride_service: RideService = Depends(get_ride_service),
    user_id: str = Depends(get_current_user_id),
):
    """Book a new ride"""
    try:
        ride = await ride_service.book_ride(
            ride_data.pickup,
            ride_data.dropoff,
            ride_data.vehicle_class,
            scheduled_for=ride_data.scheduled_for,
            user_id=user_id,
        )
        return RideCreateResponse(ride=ride)

    except InvalidLocation as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to book ride: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to book ride"
        )


@router.get("/history", response_model=RideListResponse)
async def get_ride_history(
    limit: int = 20,
    offset: int = 0,
    ride_service: RideService = Depends(get_ride_service),
    user_id: str = Depends(get_current_user_id),
):
    """Get ride history for current user"""
    rides, total = await ride_service.list_user_rides(user_id, limit, offset)
    return RideListResponse(rides=rides, total=total, limit=limit, offset=offset)


@router.get("/eco-impact", response_model=EcoImpactResponse)
async def get_eco_impact(
    eco_service: EcoService = Depends(get_eco_service),
    user_id: str = Depends(get_current_user_id),
):
    """Carbon statistics over the current user's completed rides"""
    return await eco_service.user_impact(user_id)


@router.get("/{ride_id}", response_model=Ride)
async def get_ride(
    ride_id: UUID,
    ride_service: RideService = Depends(get_ride_service),
):
    """Get ride details"""
    try:
        return await ride_service.get_ride(ride_id)
    except NotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.put("/{ride_id}/status", response_model=Ride)
async def update_ride_status(
    ride_id: UUID,
    status_data: RideStatusUpdateRequest,
    ride_service: RideService = Depends(get_ride_service),
):
    """Advance a ride to its next status (dispatch / driver app)"""
    try:
        return await ride_service.advance(ride_id, status_data.status)

    except NotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to update ride status: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update ride status"
        )


@router.post("/{ride_id}/cancel", response_model=RideCancelResponse)
async def cancel_ride(
    ride_id: UUID,
    ride_service: RideService = Depends(get_ride_service),
):
    """Cancel a ride; finished rides are left untouched"""
    try:
        cancelled = await ride_service.cancel_ride(ride_id)
        ride = await ride_service.get_ride(ride_id)
        return RideCancelResponse(ride_id=ride_id, cancelled=cancelled, status=ride.status)

    except NotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to cancel ride: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to cancel ride"
        )


@router.get("/{ride_id}/position", response_model=PositionUpdate)
async def get_ride_position(
    ride_id: UUID,
    ride_service: RideService = Depends(get_ride_service),
):
    """Latest simulated driver position"""
    try:
        await ride_service.get_ride(ride_id)
    except NotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    position = ride_service.tracking.latest(ride_id)
    if position is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No position available for this ride"
        )
    return position
