"""
Failure Handling Tests.

Reconnect backoff, error codes and the user notices they map to.
"""

import pytest

from busline.app.core.reliability import NO_RECONNECT, ReconnectPolicy
from busline.app.domain.sharing.errors import (
    CapabilityError,
    ChannelConnectionError,
    LocationError,
    SharingError,
)
from busline.app.domain.sharing.notices import NoticeKind, NoticeVariant, build_notice
from busline.app.models.enums import UserRole


def test_backoff_doubles_until_cap():
    policy = ReconnectPolicy(max_retries=5, base_delay=1.0, max_delay=10.0)

    assert [policy.delay_for(n) for n in range(5)] == [1.0, 2.0, 4.0, 8.0, 10.0]


def test_retry_budget():
    policy = ReconnectPolicy(max_retries=2)

    assert policy.enabled
    assert policy.should_retry(0)
    assert policy.should_retry(1)
    assert not policy.should_retry(2)


def test_reconnect_off_by_default():
    assert not NO_RECONNECT.enabled
    assert not NO_RECONNECT.should_retry(0)
    assert not ReconnectPolicy().enabled


def test_negative_retries_rejected():
    with pytest.raises(ValueError):
        ReconnectPolicy(max_retries=-1)


def test_error_codes():
    assert CapabilityError().error_code == "ERR_SHARE_CAPABILITY"
    assert ChannelConnectionError().error_code == "ERR_SHARE_CONNECTION"
    assert LocationError(1).error_code == "ERR_SHARE_LOCATION"


def test_channel_error_is_connection_error():
    error = ChannelConnectionError(url="wss://busline.example/ws/tracking")

    assert isinstance(error, SharingError)
    assert isinstance(error, ConnectionError)
    assert error.details == {"url": "wss://busline.example/ws/tracking"}


@pytest.mark.parametrize("kind,role,title", [
    (NoticeKind.SHARING_STARTED, UserRole.PASSENGER, "Location Shared"),
    (NoticeKind.SHARING_STARTED, UserRole.DRIVER, "Tracking Active"),
    (NoticeKind.SHARING_STOPPED, UserRole.PASSENGER, "Sharing Stopped"),
    (NoticeKind.SHARING_STOPPED, UserRole.DRIVER, "Tracking Stopped"),
    (NoticeKind.CONNECTION_ERROR, UserRole.DRIVER, "Connection Error"),
    (NoticeKind.LOCATION_ERROR, UserRole.PASSENGER, "Sharing Failed"),
])
def test_notice_copy(kind, role, title):
    assert build_notice(kind, role).title == title


def test_error_notices_are_destructive():
    notice = build_notice(NoticeKind.CAPABILITY_ERROR, UserRole.PASSENGER, schedule_id="42", error_code="ERR_SHARE_CAPABILITY")

    assert notice.variant == NoticeVariant.DESTRUCTIVE
    assert notice.schedule_id == "42"
    assert build_notice(NoticeKind.SHARING_STARTED, UserRole.PASSENGER).variant == NoticeVariant.DEFAULT
