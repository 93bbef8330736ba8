"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from busline.app.api.v1.endpoints import live_tracking, ride_requests

router = APIRouter()

# Schedule live visibility
router.include_router(live_tracking.router)

# Booking service hook for ride-request pushes
router.include_router(ride_requests.router)
