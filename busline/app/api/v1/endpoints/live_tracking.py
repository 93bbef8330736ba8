"""
Live Tracking Endpoints.

REST: drivers flip a schedule's live visibility; anyone signed in can read it.
WebSocket: the ``/ws/tracking`` relay channel shared by every schedule.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Body, Depends, Path, Query, WebSocket, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from busline.app.core.config import settings
from busline.app.core.dependencies import authenticate_socket_token, get_current_user
from busline.app.core.exceptions import ResourceNotFoundError
from busline.app.core.guards import require_role, OwnershipGuard
from busline.app.db.session import get_db
from busline.app.models.enums import UserRole
from busline.app.models.schedule import Schedule
from busline.app.schemas.schedule import ScheduleLiveResponse, ToggleLiveRequest
from busline.app.services.tracking_relay import TrackingRelay, get_tracking_relay

logger = logging.getLogger("busline.tracking")

router = APIRouter(prefix="/schedules", tags=["Live Tracking"])
ws_router = APIRouter(tags=["Live Tracking - Channel"])
ownership_guard = OwnershipGuard()


async def _get_schedule(db: AsyncSession, schedule_id: int) -> Schedule:
    result = await db.execute(select(Schedule).where(Schedule.id == schedule_id))
    schedule = result.scalar_one_or_none()
    if not schedule:
        raise ResourceNotFoundError("Schedule", schedule_id)
    return schedule


def _live_response(schedule: Schedule, relay: TrackingRelay) -> ScheduleLiveResponse:
    return ScheduleLiveResponse(
        schedule_id=schedule.id,
        is_live=schedule.is_live,
        live_updated_at=schedule.live_updated_at,
        subscribers=relay.subscriber_count(str(schedule.id)),
    )


@router.post("/{schedule_id}/toggle-live")
async def toggle_schedule_live(
    schedule_id: int = Path(..., description="Schedule ID"),
    request: ToggleLiveRequest = Body(...),
    current_user: dict = Depends(require_role([UserRole.DRIVER])),
    db: AsyncSession = Depends(get_db),
    relay: TrackingRelay = Depends(get_tracking_relay),
):
    """
    Go live / go offline for a schedule (assigned Driver only).

    Passengers use the flag to decide whether to expect bus positions.
    """
    schedule = await _get_schedule(db, schedule_id)
    ownership_guard.enforce(schedule.driver_id, current_user, "schedule")

    schedule.is_live = request.is_live
    schedule.live_updated_at = datetime.now(timezone.utc)
    await db.commit()
    await db.refresh(schedule)

    logger.info(
        "Driver %s set schedule %s live=%s",
        current_user["user_id"], schedule.id, schedule.is_live,
    )
    return _live_response(schedule, relay)


@router.get("/{schedule_id}/live")
async def get_schedule_live_status(
    schedule_id: int = Path(..., description="Schedule ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    relay: TrackingRelay = Depends(get_tracking_relay),
):
    """Read a schedule's live visibility and current subscriber count."""
    schedule = await _get_schedule(db, schedule_id)
    return _live_response(schedule, relay)


@ws_router.websocket(settings.tracking_ws_path)
async def tracking_channel(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    relay: TrackingRelay = Depends(get_tracking_relay),
):
    """
    Tracking channel.

    Client messages (JSON):
    - {"type": "TRACKING_SUBSCRIBE", "scheduleId": ...}
    - {"type": "DRIVER_LOCATION_UPDATE" | "PASSENGER_LOCATION_UPDATE", "scheduleId": ..., "payload": {...}}
    - {"type": "RIDE_REQUEST_SUBSCRIBE", "payload": {"userId": ...}}

    Server messages (JSON):
    - {"type": "TRACKING_SUBSCRIBED", ...}
    - {"type": "BUS_LOCATION", ...} / {"type": "PASSENGER_LOCATION", ...}

    Auth: optional ``?token=<jwt>`` binds the connection to that user.
    """
    identity = None
    if token:
        identity = await authenticate_socket_token(token)
        if identity is None:
            logger.warning("Rejected tracking connection: invalid token")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return
    elif settings.tracking_require_auth:
        logger.warning("Rejected tracking connection: token required")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    connection = await relay.connect(websocket, identity)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                logger.warning("Ignoring binary frame on tracking connection %s", connection.id)
                continue
            await relay.handle_message(connection, raw)
    finally:
        relay.disconnect(connection)
