"""
Location Publisher.

Client-side sharing controller. Drives the device geolocation watch and the
outbound tracking channel as one unit: a watch without an open channel, or a
channel without a watch, is never a steady state.

State machine::

    IDLE --start()--> STARTING --channel open, flag saved--> SHARING
      ^                  |                                     |
      |      open failed / flag write failed /     stop() / location error /
      |               stop()                           channel lost
      |                  v                                     |
      +------------- STOPPING <--------------------------------+

Every failure tears the whole session down and returns control to the user.
The only exception is the optional reconnect policy, which re-enters
STARTING after a dropped channel with bounded exponential backoff.
"""

import asyncio
import enum
import itertools
import logging
from typing import Callable, Optional

from busline.app.core import sharing_config
from busline.app.core.reliability import NO_RECONNECT, ReconnectPolicy
from busline.app.domain.sharing.channel import TrackingChannel
from busline.app.domain.sharing.errors import (
    CapabilityError,
    ChannelConnectionError,
    LocationError,
    SharingError,
    StateStoreError,
)
from busline.app.domain.sharing.geolocation import (
    GeolocationPositionError,
    GeolocationProvider,
    Position,
    PositionOptions,
)
from busline.app.domain.sharing.notices import Notifier, NoticeKind, build_notice
from busline.app.domain.sharing.state_store import SharingStateStore
from busline.app.domain.sharing.visibility import ScheduleVisibilityClient
from busline.app.models.enums import UserRole
from busline.app.schemas.tracking import LocationUpdate

logger = logging.getLogger("busline.sharing")

ChannelFactory = Callable[[str], TrackingChannel]


class PublisherState(str, enum.Enum):
    IDLE = "IDLE"
    STARTING = "STARTING"  # Channel handshake pending
    SHARING = "SHARING"  # Watch running and channel open
    STOPPING = "STOPPING"  # Teardown in progress


class SharingSession:
    """Client-local state of one (schedule, user) sharing session."""

    def __init__(self, schedule_id: str, user_id: str, user_name: str, resumed: bool = False):
        self.schedule_id = str(schedule_id)
        self.user_id = str(user_id)
        self.user_name = user_name
        self.resumed = resumed
        self.live_synced = False
        self.live_pending = False  # set_live(True) in flight

    def __repr__(self):
        return f"<SharingSession(schedule={self.schedule_id}, user={self.user_id}, resumed={self.resumed})>"


class LocationPublisher:
    """
    Publishes this device's position on the tracking channel.

    Owns at most one channel and one geolocation watch at a time; both are
    released together on every exit path. ``start()`` while not IDLE is
    ignored, it never opens a second channel.

    Usage:
        publisher = LocationPublisher(
            role=UserRole.PASSENGER,
            geolocation=provider,
            channel_factory=lambda schedule_id: WebSocketTrackingChannel(url),
            store=FileSharingStateStore(),
        )
        async with publisher:
            await publisher.resume(schedule_id, user_id, user_name)
            ...
    """

    def __init__(
        self,
        role: UserRole,
        geolocation: GeolocationProvider,
        channel_factory: ChannelFactory,
        store: SharingStateStore,
        notifier: Optional[Notifier] = None,
        reconnect_policy: ReconnectPolicy = NO_RECONNECT,
        visibility: Optional[ScheduleVisibilityClient] = None,
        position_options: Optional[PositionOptions] = None,
    ):
        self.role = role
        self._geolocation = geolocation
        self._channel_factory = channel_factory
        self._store = store
        self._notifier = notifier or Notifier()
        self._reconnect = reconnect_policy
        self._visibility = visibility
        self._position_options = position_options or PositionOptions()

        self._state = PublisherState.IDLE
        self._session: Optional[SharingSession] = None
        self._channel: Optional[TrackingChannel] = None
        self._opening: Optional[asyncio.Future] = None
        self._watch_id: Optional[int] = None
        self._monitor: Optional[asyncio.Task] = None
        self.last_error: Optional[SharingError] = None

    @property
    def state(self) -> PublisherState:
        return self._state

    @property
    def session(self) -> Optional[SharingSession]:
        return self._session

    @property
    def is_sharing(self) -> bool:
        return self._state is PublisherState.SHARING

    async def __aenter__(self) -> "LocationPublisher":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # Operations

    async def start(self, schedule_id: str, user_id: str, user_name: str) -> bool:
        """
        Turn sharing on (explicit user toggle).

        Returns:
            True if the publisher is now SHARING
        """
        return await self._start(SharingSession(schedule_id, user_id, user_name))

    async def resume(self, schedule_id: str, user_id: str, user_name: str) -> bool:
        """
        Resume sharing at app start if this device was sharing for the schedule.

        Resuming is silent: no "sharing started" notice.
        """
        try:
            flagged = await self._store.is_sharing(str(schedule_id))
        except StateStoreError as e:
            self.last_error = e
            logger.warning("Not resuming schedule %s: %s", schedule_id, e)
            return False
        if not flagged:
            return False
        logger.info("Resuming location sharing for schedule %s", schedule_id)
        return await self._start(SharingSession(schedule_id, user_id, user_name, resumed=True))

    async def stop(self) -> None:
        """
        Turn sharing off (explicit user toggle).

        Releases the watch and the channel, clears the persisted flag and
        confirms to the user. A no-op when nothing is running.
        """
        if self._state in (PublisherState.IDLE, PublisherState.STOPPING):
            return

        session = self._session
        await self._teardown(clear_flag=True)
        self._report(NoticeKind.SHARING_STOPPED, session)
        await self._sync_visibility(session, False)

    async def close(self) -> None:
        """
        Release the watch and the channel without clearing the persisted flag.

        For the sharing view going away: the user did not opt out, so the next
        app start resumes.
        """
        await self._teardown(clear_flag=False)

    # Lifecycle

    async def _start(self, session: SharingSession) -> bool:
        if self._state is not PublisherState.IDLE:
            logger.info(
                "Ignoring start for schedule %s: publisher is %s",
                session.schedule_id, self._state.value,
            )
            return False

        if not self._geolocation.is_supported():
            await self._clear_flag(session.schedule_id)
            self._report(NoticeKind.CAPABILITY_ERROR, session, CapabilityError())
            return False

        self._session = session
        self._state = PublisherState.STARTING

        try:
            channel = await self._open_channel(session)
        except ChannelConnectionError as e:
            if self._session is session:
                await self._teardown(clear_flag=True)
            self._report(NoticeKind.CONNECTION_ERROR, session, e)
            return False

        if channel is None:
            logger.info("Start for schedule %s abandoned: stopped during handshake", session.schedule_id)
            return False

        await self._begin_sharing(session, channel, announce=not session.resumed)
        return self._state is PublisherState.SHARING

    async def _open_channel(self, session: SharingSession) -> Optional[TrackingChannel]:
        """
        Open a fresh channel for the session.

        Returns:
            The open channel, or None if the session was stopped meanwhile
        """
        channel = self._channel_factory(session.schedule_id)
        self._channel = channel
        opening = asyncio.ensure_future(channel.open())
        self._opening = opening

        try:
            await asyncio.wait({opening})
        except asyncio.CancelledError:
            opening.cancel()
            if self._session is session:
                await self._teardown(clear_flag=False)
            raise
        finally:
            if self._opening is opening:
                self._opening = None

        if opening.cancelled() or self._channel is not channel:
            return None

        error = opening.exception()
        if error is None:
            return channel

        self._channel = None
        await channel.close()
        if isinstance(error, ChannelConnectionError):
            raise error
        await self._teardown(clear_flag=False)
        raise error

    async def _begin_sharing(self, session: SharingSession, channel: TrackingChannel, announce: bool) -> None:
        # Flag before watch: a failed write leaves only the channel to release
        try:
            await self._store.mark_sharing(session.schedule_id)
        except StateStoreError as e:
            if self._session is session:
                await self._teardown(clear_flag=False)
            self._report(NoticeKind.STATE_ERROR, session, e)
            await self._sync_visibility(session, False)
            return

        if self._session is not session:
            # Stopped while the flag was being written
            await self._clear_flag(session.schedule_id)
            return

        self._watch_id = self._geolocation.watch_position(
            self._on_position, self._on_position_error, self._position_options,
        )
        self._state = PublisherState.SHARING
        self._monitor = asyncio.ensure_future(self._supervise(session, channel))

        logger.info(
            "Sharing %s location for schedule %s as %s",
            self.role.value.lower(), session.schedule_id, session.user_id,
        )
        if announce:
            self._report(NoticeKind.SHARING_STARTED, session)
        if self.role == UserRole.DRIVER:
            await self._send_initial_fix(session)
        await self._sync_visibility(session, True)

    async def _teardown(self, clear_flag: bool) -> None:
        """Release everything the session holds, exactly once."""
        if self._state in (PublisherState.IDLE, PublisherState.STOPPING):
            return

        session = self._session
        self._state = PublisherState.STOPPING

        opening, self._opening = self._opening, None
        if opening is not None:
            opening.cancel()

        monitor, self._monitor = self._monitor, None
        if monitor is not None and monitor is not asyncio.current_task():
            monitor.cancel()

        self._release_watch()

        channel, self._channel = self._channel, None
        try:
            if channel is not None:
                await channel.close()
        finally:
            try:
                if clear_flag and session is not None:
                    await self._clear_flag(session.schedule_id)
            finally:
                self._session = None
                self._state = PublisherState.IDLE

    async def _clear_flag(self, schedule_id: str) -> None:
        try:
            await self._store.clear(schedule_id)
        except StateStoreError as e:
            self.last_error = e
            logger.warning("Sharing flag for schedule %s left behind: %s", schedule_id, e)

    def _release_watch(self) -> None:
        watch_id, self._watch_id = self._watch_id, None
        if watch_id is not None:
            self._geolocation.clear_watch(watch_id)

    async def _supervise(self, session: SharingSession, channel: TrackingChannel) -> None:
        """Detect the channel dropping underneath an active session."""
        await channel.wait_closed()
        if self._channel is not channel or self._state is not PublisherState.SHARING:
            return

        logger.warning("Tracking channel for schedule %s dropped", session.schedule_id)
        if self._reconnect.enabled and await self._reconnect_session(session, channel):
            return

        await self._teardown(clear_flag=True)
        self._report(NoticeKind.CONNECTION_LOST, session, ChannelConnectionError("Tracking channel closed"))
        await self._sync_visibility(session, False)

    async def _reconnect_session(self, session: SharingSession, dropped: TrackingChannel) -> bool:
        """
        Re-establish the channel under the reconnect policy.

        Returns:
            True if the session is sharing again or was stopped meanwhile,
            False once the retries are exhausted
        """
        self._release_watch()
        self._channel = None
        self._state = PublisherState.STARTING
        await dropped.close()

        for attempt in itertools.count():
            if not self._reconnect.should_retry(attempt):
                logger.warning(
                    "Giving up on schedule %s after %d reconnect attempt(s)",
                    session.schedule_id, attempt,
                )
                return False

            delay = self._reconnect.delay_for(attempt)
            logger.info(
                "Reconnecting schedule %s in %.1fs (attempt %d/%d)",
                session.schedule_id, delay, attempt + 1, self._reconnect.max_retries,
            )
            await asyncio.sleep(delay)
            if self._session is not session:
                return True

            try:
                channel = await self._open_channel(session)
            except ChannelConnectionError as e:
                logger.warning("Reconnect attempt %d for schedule %s failed: %s", attempt + 1, session.schedule_id, e)
                continue

            if channel is None:
                return True

            await self._begin_sharing(session, channel, announce=False)
            return True

    # Geolocation callbacks

    async def _on_position(self, position: Position) -> None:
        channel = self._channel
        session = self._session
        if self._state is not PublisherState.SHARING or channel is None or not channel.is_open:
            logger.debug("Dropping position: tracking channel not open")
            return

        update = LocationUpdate(
            schedule_id=session.schedule_id,
            user_id=session.user_id,
            user_name=session.user_name,
            role=self.role,
            lat=position.lat,
            lng=position.lng,
        )
        try:
            await channel.send(update.to_message())
        except ChannelConnectionError as e:
            logger.debug("Dropping position for schedule %s: %s", session.schedule_id, e)

    async def _send_initial_fix(self, session: SharingSession) -> None:
        """Publish one position right away instead of waiting for the first watch update."""
        options = self._position_options.model_copy(
            update={"timeout_ms": sharing_config.INITIAL_FIX_TIMEOUT_MS},
        )
        try:
            position = await self._geolocation.get_current_position(options)
        except GeolocationPositionError as e:
            logger.warning("Initial fix for schedule %s failed (code %s): %s", session.schedule_id, e.code, e.message)
            return
        if position is not None and self._session is session:
            await self._on_position(position)

    async def _on_position_error(self, error: GeolocationPositionError) -> None:
        if self._state is not PublisherState.SHARING:
            return

        session = self._session
        logger.warning(
            "Geolocation error on schedule %s (code %s): %s",
            session.schedule_id, error.code, error.message,
        )
        await self._teardown(clear_flag=True)
        self._report(NoticeKind.LOCATION_ERROR, session, LocationError(error.code, error.message))
        await self._sync_visibility(session, False)

    # Side effects

    def _report(self, kind: NoticeKind, session: Optional[SharingSession], error: Optional[SharingError] = None) -> None:
        if error is not None:
            self.last_error = error
        self._notifier.notify(build_notice(
            kind,
            self.role,
            schedule_id=session.schedule_id if session else None,
            error_code=error.error_code if error else None,
        ))

    async def _sync_visibility(self, session: Optional[SharingSession], is_live: bool) -> None:
        """
        Keep the schedule's live flag on the server in step with the session.

        Going offline while the go-live call is still in flight is left to
        that call: once it lands on a session that already ended, it is
        followed by the offline call, so the two never arrive out of order.
        """
        if self._visibility is None or self.role != UserRole.DRIVER or session is None:
            return

        if not is_live:
            if session.live_synced and not session.live_pending:
                await self._set_offline(session)
            return

        session.live_pending = True
        try:
            synced = await self._visibility.set_live(session.schedule_id, True)
        finally:
            session.live_pending = False
        if not synced:
            return
        session.live_synced = True
        if self._session is not session:
            await self._set_offline(session)

    async def _set_offline(self, session: SharingSession) -> None:
        if await self._visibility.set_live(session.schedule_id, False):
            session.live_synced = False
