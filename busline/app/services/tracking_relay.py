"""
Tracking Relay Service.

Routes live location messages between every party watching one schedule:
the driver dashboard, passenger map views and the publishers themselves.
The relay has no business logic beyond routing and identity checks; it keeps
only open connections and their subscriptions, nothing is persisted.
"""

import json
import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional, Set

from pydantic import ValidationError

from busline.app.core.config import settings
from busline.app.models.enums import UserRole
from busline.app.schemas.tracking import (
    DRIVER_UPDATE_TYPES,
    ConnectionIdentity,
    LocationPayload,
    SubscriberPayload,
    TrackingEnvelope,
    TrackingMessageType,
)

logger = logging.getLogger("busline.tracking")

DEFAULT_PASSENGER_NAME = "Passenger"


class TrackingConnection:
    """One open socket on the tracking channel."""

    def __init__(self, websocket, identity: Optional[ConnectionIdentity] = None):
        self.id = uuid.uuid4().hex[:12]
        self.websocket = websocket
        self.identity = identity
        self.schedules: Set[str] = set()

    @property
    def is_bound(self) -> bool:
        return self.identity is not None

    def __repr__(self):
        who = self.identity.user_id if self.identity else "anonymous"
        return f"<TrackingConnection(id={self.id}, user={who})>"


class TrackingRelay:
    """
    Per-schedule fan-out of location updates.

    Subscribers are kept in insertion order per schedule. Updates go to every
    subscriber of the message's schedule except the sender.
    """

    def __init__(self, replay_last_known: bool = False):
        self.replay_last_known = replay_last_known
        # scheduleId -> subscribed connections (dict keeps insertion order)
        self._subscriptions: Dict[str, Dict[str, TrackingConnection]] = {}
        # driverId -> ride request sink
        self._ride_request_sinks: Dict[str, TrackingConnection] = {}
        # Last-known positions, only filled when replay_last_known is on
        self._last_bus_locations: Dict[str, Dict[str, Any]] = {}
        self._passenger_locations: Dict[str, Dict[str, Dict[str, Any]]] = {}

    async def connect(self, websocket, identity: Optional[ConnectionIdentity] = None) -> TrackingConnection:
        """Accept the socket and register it with the relay."""
        await websocket.accept()
        connection = TrackingConnection(websocket, identity)
        logger.info("Tracking connection opened: %r", connection)
        return connection

    def disconnect(self, connection: TrackingConnection) -> None:
        """Drop the connection from every schedule and ride-request registration."""
        for schedule_id in list(connection.schedules):
            self.unsubscribe(connection, schedule_id)

        for driver_id, sink in list(self._ride_request_sinks.items()):
            if sink is connection:
                del self._ride_request_sinks[driver_id]
                logger.info("Driver %s unsubscribed from ride requests", driver_id)

        logger.info("Tracking connection closed: %r", connection)

    async def subscribe(self, connection: TrackingConnection, schedule_id: str) -> None:
        subscribers = self._subscriptions.setdefault(schedule_id, {})
        subscribers[connection.id] = connection
        connection.schedules.add(schedule_id)
        logger.info("Connection %s subscribed to schedule %s", connection.id, schedule_id)

        await self._send(connection, {
            "type": TrackingMessageType.TRACKING_SUBSCRIBED.value,
            "scheduleId": schedule_id,
            "subscribers": len(subscribers),
        })

        if self.replay_last_known:
            await self._replay(connection, schedule_id)

    def unsubscribe(self, connection: TrackingConnection, schedule_id: str) -> None:
        connection.schedules.discard(schedule_id)
        subscribers = self._subscriptions.get(schedule_id)
        if subscribers is None:
            return
        subscribers.pop(connection.id, None)
        if not subscribers:
            del self._subscriptions[schedule_id]

    def subscriber_count(self, schedule_id: str) -> int:
        return len(self._subscriptions.get(schedule_id, {}))

    async def handle_message(self, connection: TrackingConnection, raw: str) -> None:
        """
        Dispatch one inbound text frame.

        Unknown types, malformed JSON and invalid payloads are logged and
        ignored; they never close the connection.
        """
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Ignoring non-JSON frame from %s", connection.id)
            return

        if not isinstance(data, dict):
            logger.warning("Ignoring non-object frame from %s", connection.id)
            return

        try:
            message_type = TrackingMessageType(data.get("type"))
        except ValueError:
            logger.debug("Ignoring unknown message type %r from %s", data.get("type"), connection.id)
            return

        try:
            envelope = TrackingEnvelope.model_validate({**data, "type": message_type})
        except ValidationError as e:
            logger.warning("Invalid %s envelope from %s: %s", message_type.value, connection.id, e)
            return

        try:
            if message_type == TrackingMessageType.TRACKING_SUBSCRIBE:
                if self._require_schedule(envelope, connection):
                    await self.subscribe(connection, envelope.schedule_id)
            elif message_type == TrackingMessageType.TRACKING_UNSUBSCRIBE:
                if self._require_schedule(envelope, connection):
                    self.unsubscribe(connection, envelope.schedule_id)
            elif message_type in DRIVER_UPDATE_TYPES:
                if self._require_schedule(envelope, connection):
                    await self._relay_driver_location(connection, envelope)
            elif message_type == TrackingMessageType.PASSENGER_LOCATION_UPDATE:
                if self._require_schedule(envelope, connection):
                    await self._relay_passenger_location(connection, envelope)
            elif message_type == TrackingMessageType.RIDE_REQUEST_SUBSCRIBE:
                self._register_ride_request_sink(connection, envelope)
            else:
                # Outbound-only types echoed back by a confused client
                logger.debug("Ignoring %s sent by %s", message_type.value, connection.id)
        except ValidationError as e:
            logger.warning("Invalid %s payload from %s: %s", message_type.value, connection.id, e)

    async def notify_drivers(self, driver_ids: Iterable[str], message: Dict[str, Any]) -> int:
        """
        Push a ride-request message to each listed driver with an open sink.

        Returns:
            Number of drivers the message was handed to
        """
        delivered = 0
        for driver_id in driver_ids:
            sink = self._ride_request_sinks.get(str(driver_id))
            if sink is not None and await self._send(sink, message):
                delivered += 1
        return delivered

    def reset(self) -> None:
        """Forget every subscription and cached position."""
        self._subscriptions.clear()
        self._ride_request_sinks.clear()
        self._last_bus_locations.clear()
        self._passenger_locations.clear()

    # Internals

    def _require_schedule(self, envelope: TrackingEnvelope, connection: TrackingConnection) -> bool:
        if not envelope.schedule_id:
            logger.warning("%s from %s has no scheduleId", envelope.type.value, connection.id)
            return False
        return True

    def _authorized(self, connection: TrackingConnection, role: UserRole, user_id: Optional[str]) -> bool:
        """Check a publisher's claims against the identity bound at connect time."""
        identity = connection.identity
        if identity is None:
            return True

        if identity.role != role:
            logger.warning(
                "Rejected %s update from %s: bound role is %s",
                role.value, connection.id, identity.role.value,
            )
            return False

        if user_id is not None and user_id != identity.user_id:
            logger.warning(
                "Rejected update from %s: claimed user %s, bound user %s",
                connection.id, user_id, identity.user_id,
            )
            return False

        return True

    async def _relay_driver_location(self, connection: TrackingConnection, envelope: TrackingEnvelope) -> None:
        payload = LocationPayload.model_validate(envelope.payload or {})
        if not self._authorized(connection, UserRole.DRIVER, payload.user_id):
            return

        location = payload.model_dump(by_alias=True, exclude_none=True)
        if connection.is_bound:
            location["userId"] = connection.identity.user_id

        if self.replay_last_known:
            self._last_bus_locations[envelope.schedule_id] = location

        await self._broadcast(envelope.schedule_id, {
            "type": TrackingMessageType.BUS_LOCATION.value,
            "scheduleId": envelope.schedule_id,
            "location": location,
        }, exclude=connection)

    async def _relay_passenger_location(self, connection: TrackingConnection, envelope: TrackingEnvelope) -> None:
        payload = LocationPayload.model_validate(envelope.payload or {})
        if not self._authorized(connection, UserRole.PASSENGER, payload.user_id):
            return

        user_id = payload.user_id
        if connection.is_bound:
            user_id = connection.identity.user_id
        user_name = payload.user_name or DEFAULT_PASSENGER_NAME
        location = {"lat": payload.lat, "lng": payload.lng}

        if self.replay_last_known and user_id:
            self._passenger_locations.setdefault(envelope.schedule_id, {})[user_id] = {
                "userName": user_name,
                "location": location,
            }

        delivered = await self._broadcast(envelope.schedule_id, {
            "type": TrackingMessageType.PASSENGER_LOCATION.value,
            "scheduleId": envelope.schedule_id,
            "userId": user_id,
            "userName": user_name,
            "location": location,
        }, exclude=connection)

        if delivered:
            logger.debug("Passenger %s location sent to %d subscriber(s)", user_id, delivered)
        else:
            logger.debug("No subscribers for schedule %s", envelope.schedule_id)

    def _register_ride_request_sink(self, connection: TrackingConnection, envelope: TrackingEnvelope) -> None:
        payload = SubscriberPayload.model_validate(envelope.payload or {})
        if not self._authorized(connection, UserRole.DRIVER, payload.user_id):
            return
        self._ride_request_sinks[payload.user_id] = connection
        logger.info("Driver %s subscribed to ride request updates", payload.user_id)

    async def _replay(self, connection: TrackingConnection, schedule_id: str) -> None:
        bus_location = self._last_bus_locations.get(schedule_id)
        if bus_location is not None:
            await self._send(connection, {
                "type": TrackingMessageType.BUS_LOCATION.value,
                "scheduleId": schedule_id,
                "location": bus_location,
            })

        for user_id, cached in self._passenger_locations.get(schedule_id, {}).items():
            await self._send(connection, {
                "type": TrackingMessageType.PASSENGER_LOCATION.value,
                "scheduleId": schedule_id,
                "userId": user_id,
                "userName": cached["userName"],
                "location": cached["location"],
            })

    async def _broadcast(
        self,
        schedule_id: str,
        message: Dict[str, Any],
        exclude: Optional[TrackingConnection] = None,
    ) -> int:
        subscribers: List[TrackingConnection] = list(self._subscriptions.get(schedule_id, {}).values())
        delivered = 0
        for subscriber in subscribers:
            if subscriber is exclude:
                continue
            if await self._send(subscriber, message):
                delivered += 1
        return delivered

    async def _send(self, connection: TrackingConnection, message: Dict[str, Any]) -> bool:
        try:
            await connection.websocket.send_text(json.dumps(message))
            return True
        except Exception as e:
            logger.warning("Dropping connection %s after failed send: %s", connection.id, e)
            self.disconnect(connection)
            return False


# Global instance for the tracking endpoint
tracking_relay = TrackingRelay(replay_last_known=settings.tracking_replay_last_known)


def get_tracking_relay() -> TrackingRelay:
    """FastAPI dependency returning the process-wide relay."""
    return tracking_relay
