"""
Location sharing errors.

Every failure of a sharing session maps to one of these. The publisher
turns them into user-visible notices at its boundary; none of them escape
as unhandled faults.
"""

from typing import Any, Dict, Optional


class SharingError(Exception):
    """Base location sharing exception."""

    error_code = "ERR_SHARE"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class CapabilityError(SharingError):
    """Geolocation is not supported by the runtime. Never retried."""

    error_code = "ERR_SHARE_CAPABILITY"

    def __init__(self, message: str = "Geolocation is not supported on this device"):
        super().__init__(message)


class ChannelConnectionError(SharingError, ConnectionError):
    """The tracking channel failed to open, or dropped after opening."""

    error_code = "ERR_SHARE_CONNECTION"

    def __init__(self, message: str = "Could not connect to tracking server", url: Optional[str] = None):
        super().__init__(message, details={"url": url} if url else None)
        self.url = url


class LocationError(SharingError):
    """The geolocation watch reported an error."""

    error_code = "ERR_SHARE_LOCATION"

    def __init__(self, code: int, message: str = "Could not access your location"):
        super().__init__(message, details={"code": code})
        self.code = code


class StateStoreError(SharingError):
    """The sharing-state store could not be read or written."""

    error_code = "ERR_SHARE_STATE"

    def __init__(self, message: str = "Could not save the sharing state", schedule_id: Optional[str] = None):
        super().__init__(message, details={"schedule_id": schedule_id} if schedule_id else None)
        self.schedule_id = schedule_id
