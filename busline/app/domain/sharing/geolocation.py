"""
Geolocation capability.

The publisher consumes geolocation through ``GeolocationProvider``: watch
the position with a continuous callback, and clear the watch. Callbacks are
coroutines and are awaited in order, so positions reach the channel in the
order they were produced.
"""

import asyncio
import itertools
import json
import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from busline.app.core import sharing_config

logger = logging.getLogger("busline.sharing")

# W3C GeolocationPositionError codes
PERMISSION_DENIED = 1
POSITION_UNAVAILABLE = 2
TIMEOUT = 3


class Position(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    accuracy_meters: Optional[float] = None
    timestamp: float = Field(default_factory=time.time)


class PositionOptions(BaseModel):
    enable_high_accuracy: bool = sharing_config.HIGH_ACCURACY
    maximum_age_ms: int = sharing_config.MAXIMUM_AGE_MS
    timeout_ms: Optional[int] = sharing_config.POSITION_TIMEOUT_MS


class GeolocationPositionError(Exception):
    def __init__(self, code: int, message: str = ""):
        self.code = code
        self.message = message or {
            PERMISSION_DENIED: "User denied geolocation",
            POSITION_UNAVAILABLE: "Position unavailable",
            TIMEOUT: "Timed out waiting for a position",
        }.get(code, "Geolocation error")
        super().__init__(self.message)


PositionCallback = Callable[[Position], Awaitable[None]]
ErrorCallback = Callable[[GeolocationPositionError], Awaitable[None]]


class GeolocationProvider(ABC):
    """Device geolocation, shaped like the browser's ``navigator.geolocation``."""

    def is_supported(self) -> bool:
        return True

    @abstractmethod
    def watch_position(
        self,
        on_position: PositionCallback,
        on_error: ErrorCallback,
        options: Optional[PositionOptions] = None,
    ) -> int:
        """Start a continuous watch and return its handle."""

    @abstractmethod
    def clear_watch(self, watch_id: int) -> None:
        """Stop a watch. Unknown handles are ignored; safe to call from a callback."""

    async def get_current_position(self, options: Optional[PositionOptions] = None) -> Optional[Position]:
        """
        One-shot fix.

        Returns None when the provider cannot answer without a watch. Raises
        GeolocationPositionError when a fix was attempted and failed.
        """
        return None


class ReplayGeolocation(GeolocationProvider):
    """
    Plays back a recorded track as a live position feed.

    Used by the command line publisher and for demos. Each watch runs as its
    own task and emits one point per ``interval`` seconds; with ``loop`` the
    track restarts from the beginning when exhausted.
    """

    def __init__(self, points: Iterable[Position], interval: float = 1.0, loop: bool = True):
        self.points: List[Position] = list(points)
        self.interval = interval
        self.loop = loop
        self._watches: Dict[int, asyncio.Task] = {}
        self._ids = itertools.count(1)

    @classmethod
    def from_file(cls, path, interval: float = 1.0, loop: bool = True) -> "ReplayGeolocation":
        """Load a JSON list of ``{"lat": .., "lng": ..}`` objects."""
        raw = json.loads(Path(path).expanduser().read_text())
        return cls([Position(**point) for point in raw], interval=interval, loop=loop)

    def is_supported(self) -> bool:
        return bool(self.points)

    def watch_position(self, on_position, on_error, options=None) -> int:
        watch_id = next(self._ids)
        task = asyncio.ensure_future(self._run(watch_id, on_position, on_error))
        task.add_done_callback(self._watch_done)
        self._watches[watch_id] = task
        return watch_id

    async def get_current_position(self, options=None) -> Optional[Position]:
        return self.points[0].model_copy(update={"timestamp": time.time()}) if self.points else None

    @staticmethod
    def _watch_done(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Replay watch failed", exc_info=error)

    def clear_watch(self, watch_id: int) -> None:
        task = self._watches.pop(watch_id, None)
        # Clearing from inside one of our own callbacks lets the task finish on its own
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _run(self, watch_id: int, on_position: PositionCallback, on_error: ErrorCallback) -> None:
        track = itertools.cycle(self.points) if self.loop else iter(self.points)
        for point in track:
            if watch_id not in self._watches:
                return
            await on_position(point.model_copy(update={"timestamp": time.time()}))
            await asyncio.sleep(self.interval)
        if watch_id in self._watches:
            await on_error(GeolocationPositionError(POSITION_UNAVAILABLE, "Recorded track ended"))
