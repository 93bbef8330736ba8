"""
User-visible notices emitted by the location publisher.

The UI layer renders them as toasts; headless runs log them.
"""

import enum
import logging
from typing import List, Optional

from pydantic import BaseModel

from busline.app.models.enums import UserRole

logger = logging.getLogger("busline.sharing")


class NoticeKind(str, enum.Enum):
    SHARING_STARTED = "SHARING_STARTED"
    SHARING_STOPPED = "SHARING_STOPPED"
    CAPABILITY_ERROR = "CAPABILITY_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    CONNECTION_LOST = "CONNECTION_LOST"
    LOCATION_ERROR = "LOCATION_ERROR"
    STATE_ERROR = "STATE_ERROR"


class NoticeVariant(str, enum.Enum):
    DEFAULT = "default"
    DESTRUCTIVE = "destructive"


class Notice(BaseModel):
    kind: NoticeKind
    title: str
    description: str
    variant: NoticeVariant = NoticeVariant.DEFAULT
    schedule_id: Optional[str] = None
    error_code: Optional[str] = None


# (title, description) per kind; role-specific where drivers and passengers differ
_COPY = {
    (NoticeKind.SHARING_STARTED, UserRole.PASSENGER): (
        "Location Shared", "The driver can now see your live position."),
    (NoticeKind.SHARING_STARTED, UserRole.DRIVER): (
        "Tracking Active", "Passengers can now see your live location."),
    (NoticeKind.SHARING_STOPPED, UserRole.PASSENGER): (
        "Sharing Stopped", "Your location is no longer visible to the driver."),
    (NoticeKind.SHARING_STOPPED, UserRole.DRIVER): (
        "Tracking Stopped", "You are now offline."),
    NoticeKind.CAPABILITY_ERROR: ("Error", "Geolocation is not supported on this device."),
    NoticeKind.CONNECTION_ERROR: ("Connection Error", "Could not connect to tracking server."),
    NoticeKind.CONNECTION_LOST: ("Connection Lost", "Location sharing stopped after losing the tracking server."),
    NoticeKind.LOCATION_ERROR: ("Sharing Failed", "Could not access your location."),
    NoticeKind.STATE_ERROR: ("Sharing Failed", "Could not save your sharing setting on this device."),
}

_DESTRUCTIVE = {
    NoticeKind.CAPABILITY_ERROR,
    NoticeKind.CONNECTION_ERROR,
    NoticeKind.CONNECTION_LOST,
    NoticeKind.LOCATION_ERROR,
    NoticeKind.STATE_ERROR,
}


def build_notice(
    kind: NoticeKind,
    role: UserRole,
    schedule_id: Optional[str] = None,
    error_code: Optional[str] = None,
) -> Notice:
    title, description = _COPY.get((kind, role)) or _COPY[kind]
    return Notice(
        kind=kind,
        title=title,
        description=description,
        variant=NoticeVariant.DESTRUCTIVE if kind in _DESTRUCTIVE else NoticeVariant.DEFAULT,
        schedule_id=schedule_id,
        error_code=error_code,
    )


class Notifier:
    """Delivers notices to the user. The default implementation logs them."""

    def notify(self, notice: Notice) -> None:
        level = logging.WARNING if notice.variant == NoticeVariant.DESTRUCTIVE else logging.INFO
        logger.log(level, "%s: %s", notice.title, notice.description)


class RecordingNotifier(Notifier):
    """Keeps every notice, for tests and for UIs that poll."""

    def __init__(self):
        self.notices: List[Notice] = []

    def notify(self, notice: Notice) -> None:
        super().notify(notice)
        self.notices.append(notice)

    def kinds(self) -> List[NoticeKind]:
        return [n.kind for n in self.notices]
