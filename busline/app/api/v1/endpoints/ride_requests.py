"""
Ride Request Notification Endpoint.

The booking service creates, accepts and cancels ride requests; drivers
learn about them over the tracking channel after sending
RIDE_REQUEST_SUBSCRIBE. This hook is how the booking service reaches them.
"""

import logging

from fastapi import APIRouter, Body, Depends

from busline.app.core.guards import require_role
from busline.app.models.enums import UserRole
from busline.app.schemas.tracking import RideRequestNotification, RideRequestNotificationResult
from busline.app.services.tracking_relay import TrackingRelay, get_tracking_relay

logger = logging.getLogger("busline.tracking")

router = APIRouter(prefix="/ride-requests", tags=["Ride Requests"])


@router.post("/notify", response_model=RideRequestNotificationResult)
async def notify_ride_request_drivers(
    request: RideRequestNotification = Body(...),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    relay: TrackingRelay = Depends(get_tracking_relay),
):
    """
    Push a ride-request update to the listed drivers (service account only).

    Drivers without an open sink are skipped; the booking service keeps the
    request itself, so nothing is queued here.
    """
    delivered = await relay.notify_drivers(request.driver_ids, request.message)
    logger.info(
        "Ride-request update from %s delivered to %d of %d driver(s)",
        current_user["user_id"], delivered, len(request.driver_ids),
    )
    return RideRequestNotificationResult(requested=len(request.driver_ids), delivered=delivered)
