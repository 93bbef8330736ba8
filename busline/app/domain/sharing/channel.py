"""
Client side of the tracking channel.

A ``TrackingChannel`` is one connection to the relay, opened for one sharing
session and owned by exactly one publisher. It never reconnects by itself.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
from urllib.parse import urlencode, urlsplit, urlunsplit

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI
from websockets.protocol import State

from busline.app.core import sharing_config
from busline.app.core.config import settings
from busline.app.domain.sharing.errors import ChannelConnectionError

logger = logging.getLogger("busline.sharing")


def tracking_url(base_url: str, token: Optional[str] = None, path: Optional[str] = None) -> str:
    """
    Build the channel URL from the site's base URL.

    ``https`` sites get ``wss``, everything else ``ws``; the path is the
    relay's single endpoint regardless of schedule.
    """
    parts = urlsplit(base_url)
    scheme = "wss" if parts.scheme in ("https", "wss") else "ws"
    query = urlencode({"token": token}) if token else ""
    return urlunsplit((scheme, parts.netloc, path or settings.tracking_ws_path, query, ""))


class TrackingChannel(ABC):
    """One duplex connection to the tracking relay."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        ...

    @abstractmethod
    async def open(self) -> None:
        """Complete the handshake or raise ``ChannelConnectionError``."""

    @abstractmethod
    async def send(self, message: Dict[str, Any]) -> None:
        """Send one JSON message or raise ``ChannelConnectionError``."""

    @abstractmethod
    async def close(self) -> None:
        """Close the connection. Safe on a channel that never opened."""

    @abstractmethod
    async def wait_closed(self) -> None:
        """Return once the connection is closed, from either side."""


class WebSocketTrackingChannel(TrackingChannel):
    """Tracking channel over the ``websockets`` asyncio client."""

    def __init__(self, url: str, open_timeout: float = sharing_config.CHANNEL_OPEN_TIMEOUT):
        self.url = url
        self.open_timeout = open_timeout
        self._ws = None
        self._closed = asyncio.Event()

    @property
    def is_open(self) -> bool:
        return self._ws is not None and self._ws.state is State.OPEN

    async def open(self) -> None:
        try:
            self._ws = await connect(self.url, open_timeout=self.open_timeout)
        except (InvalidURI, InvalidHandshake, OSError, asyncio.TimeoutError) as e:
            self._closed.set()
            raise ChannelConnectionError(f"Could not connect to tracking server: {e}", url=self.url) from e
        logger.debug("Tracking channel open: %s", self.url)

    async def send(self, message: Dict[str, Any]) -> None:
        if self._ws is None:
            raise ChannelConnectionError("Tracking channel is not open", url=self.url)
        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed as e:
            raise ChannelConnectionError(f"Tracking channel closed: {e}", url=self.url) from e

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
        self._closed.set()

    async def wait_closed(self) -> None:
        if self._ws is not None:
            await self._ws.wait_closed()
            return
        await self._closed.wait()
