"""
Tracking channel schemas.

Wire envelopes exchanged on ``/ws/tracking``. Field names on the wire are
camelCase (``scheduleId``, ``userId``) to match the web and mobile clients.
"""

import enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from busline.app.models.enums import UserRole


class TrackingMessageType(str, enum.Enum):
    """Message types understood by the relay."""
    # Inbound
    TRACKING_SUBSCRIBE = "TRACKING_SUBSCRIBE"
    TRACKING_UNSUBSCRIBE = "TRACKING_UNSUBSCRIBE"
    DRIVER_LOCATION_UPDATE = "DRIVER_LOCATION_UPDATE"
    LOCATION_UPDATE = "LOCATION_UPDATE"  # Legacy alias of DRIVER_LOCATION_UPDATE
    PASSENGER_LOCATION_UPDATE = "PASSENGER_LOCATION_UPDATE"
    RIDE_REQUEST_SUBSCRIBE = "RIDE_REQUEST_SUBSCRIBE"

    # Outbound
    TRACKING_SUBSCRIBED = "TRACKING_SUBSCRIBED"
    BUS_LOCATION = "BUS_LOCATION"
    PASSENGER_LOCATION = "PASSENGER_LOCATION"


DRIVER_UPDATE_TYPES = {
    TrackingMessageType.DRIVER_LOCATION_UPDATE,
    TrackingMessageType.LOCATION_UPDATE,
}


def _as_str(value):
    """Ids may arrive as JSON numbers; the relay treats them as opaque strings."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class LocationPayload(BaseModel):
    """Position reported by a publisher."""
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    user_id: Optional[str] = Field(None, alias="userId")
    user_name: Optional[str] = Field(None, alias="userName")

    @field_validator("user_id", mode="before")
    @classmethod
    def coerce_user_id(cls, v):
        return _as_str(v)

    class Config:
        populate_by_name = True


class SubscriberPayload(BaseModel):
    """Identity sent with RIDE_REQUEST_SUBSCRIBE."""
    user_id: str = Field(..., alias="userId")

    @field_validator("user_id", mode="before")
    @classmethod
    def coerce_user_id(cls, v):
        return _as_str(v)

    class Config:
        populate_by_name = True


class TrackingEnvelope(BaseModel):
    """Inbound message on the tracking channel."""
    type: TrackingMessageType
    schedule_id: Optional[str] = Field(None, alias="scheduleId")
    payload: Optional[Dict[str, Any]] = None

    @field_validator("schedule_id", mode="before")
    @classmethod
    def coerce_schedule_id(cls, v):
        return _as_str(v)

    class Config:
        populate_by_name = True


class LocationUpdate(BaseModel):
    """
    One telemetry point produced by a Location Publisher.

    The role is carried by the message type on the wire.
    """
    schedule_id: str
    user_id: str
    user_name: str
    role: UserRole
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)

    def message_type(self) -> TrackingMessageType:
        if self.role == UserRole.DRIVER:
            return TrackingMessageType.DRIVER_LOCATION_UPDATE
        return TrackingMessageType.PASSENGER_LOCATION_UPDATE

    def to_message(self) -> Dict[str, Any]:
        """Serialize as the outbound publisher envelope."""
        return {
            "type": self.message_type().value,
            "scheduleId": self.schedule_id,
            "payload": {
                "lat": self.lat,
                "lng": self.lng,
                "userId": self.user_id,
                "userName": self.user_name,
            },
        }


class ConnectionIdentity(BaseModel):
    """Identity bound to a relay connection from a verified token."""
    user_id: str
    role: UserRole
    username: Optional[str] = None


class RideRequestNotification(BaseModel):
    """Ride-request update pushed by the booking service to listening drivers."""
    driver_ids: List[str] = Field(..., alias="driverIds", min_length=1)
    message: Dict[str, Any]

    @field_validator("driver_ids", mode="before")
    @classmethod
    def coerce_driver_ids(cls, v):
        return [_as_str(item) for item in v] if isinstance(v, list) else v

    class Config:
        populate_by_name = True


class RideRequestNotificationResult(BaseModel):
    requested: int
    delivered: int  # Drivers with an open ride-request sink on this relay
