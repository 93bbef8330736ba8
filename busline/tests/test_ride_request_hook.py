"""
Ride Request Hook Tests.

The booking service pushes ride-request updates through REST; drivers
receive them on their tracking connection.
"""

import json

import pytest

from busline.app.services.tracking_relay import tracking_relay


def auth(token):
    return {"Authorization": f"Bearer {token}"}


class RecordingSocket:
    def __init__(self):
        self.frames = []

    async def accept(self):
        pass

    async def send_text(self, data):
        self.frames.append(json.loads(data))


async def listening_driver(driver_id):
    websocket = RecordingSocket()
    connection = await tracking_relay.connect(websocket)
    await tracking_relay.handle_message(connection, json.dumps({
        "type": "RIDE_REQUEST_SUBSCRIBE",
        "payload": {"userId": driver_id},
    }))
    return connection, websocket


@pytest.mark.asyncio
async def test_booking_service_reaches_listening_drivers(client, admin_token, driver):
    _, driver_ws = await listening_driver(driver.id)

    response = await client.post(
        "/v1/ride-requests/notify",
        json={"driverIds": [driver.id, 999], "message": {"type": "RIDE_REQUEST_CREATED", "requestId": 11}},
        headers=auth(admin_token),
    )

    assert response.status_code == 200
    assert response.json() == {"requested": 2, "delivered": 1}
    assert driver_ws.frames == [{"type": "RIDE_REQUEST_CREATED", "requestId": 11}]


@pytest.mark.asyncio
async def test_disconnected_driver_is_skipped(client, admin_token, driver):
    connection, driver_ws = await listening_driver(driver.id)
    tracking_relay.disconnect(connection)

    response = await client.post(
        "/v1/ride-requests/notify",
        json={"driverIds": [str(driver.id)], "message": {"type": "RIDE_REQUEST_CANCELLED"}},
        headers=auth(admin_token),
    )

    assert response.json()["delivered"] == 0
    assert driver_ws.frames == []


@pytest.mark.asyncio
async def test_drivers_cannot_push_ride_requests(client, driver_token, driver):
    _, driver_ws = await listening_driver(driver.id)

    response = await client.post(
        "/v1/ride-requests/notify",
        json={"driverIds": [driver.id], "message": {"type": "RIDE_REQUEST_CREATED"}},
        headers=auth(driver_token),
    )

    assert response.status_code == 403
    assert driver_ws.frames == []


@pytest.mark.asyncio
async def test_empty_driver_list_rejected(client, admin_token):
    response = await client.post(
        "/v1/ride-requests/notify",
        json={"driverIds": [], "message": {"type": "RIDE_REQUEST_CREATED"}},
        headers=auth(admin_token),
    )

    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_VALIDATION"
