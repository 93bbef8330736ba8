"""
Sharing-State Store Tests.
"""

import json

import pytest
import redis.asyncio as redis

from busline.app.domain.sharing.errors import StateStoreError
from busline.app.domain.sharing.state_store import (
    FileSharingStateStore,
    MemorySharingStateStore,
    RedisSharingStateStore,
    sharing_key,
)


def test_sharing_key():
    assert sharing_key("sched-42") == "share_location_sched-42"
    assert sharing_key(42) == "share_location_42"


@pytest.fixture(params=["memory", "file", "redis"])
def any_store(request, tmp_path, redis_client_session):
    if request.param == "memory":
        return MemorySharingStateStore()
    if request.param == "file":
        return FileSharingStateStore(tmp_path / "sharing_state.json")
    return RedisSharingStateStore(redis_client_session)


@pytest.mark.asyncio
async def test_flag_lifecycle(any_store):
    """Absent means not sharing; mark and clear flip it."""
    assert await any_store.is_sharing("sched-42") is False

    await any_store.mark_sharing("sched-42")
    assert await any_store.is_sharing("sched-42") is True
    assert await any_store.is_sharing("sched-99") is False

    await any_store.clear("sched-42")
    assert await any_store.is_sharing("sched-42") is False


@pytest.mark.asyncio
async def test_clear_is_idempotent(any_store):
    await any_store.clear("sched-42")
    await any_store.mark_sharing("sched-42")
    await any_store.clear("sched-42")
    await any_store.clear("sched-42")

    assert await any_store.is_sharing("sched-42") is False


@pytest.mark.asyncio
async def test_sharing_schedules(any_store):
    await any_store.mark_sharing("sched-99")
    await any_store.mark_sharing("sched-42")
    await any_store.mark_sharing("sched-7")
    await any_store.clear("sched-7")

    assert await any_store.sharing_schedules() == ["sched-42", "sched-99"]


@pytest.mark.asyncio
async def test_file_store_survives_restart(tmp_path):
    """A fresh store over the same file sees the flag: the reload case."""
    path = tmp_path / "state" / "sharing_state.json"

    await FileSharingStateStore(path).mark_sharing("sched-42")

    reopened = FileSharingStateStore(path)
    assert await reopened.is_sharing("sched-42") is True
    assert json.loads(path.read_text()) == {"share_location_sched-42": "true"}


@pytest.mark.asyncio
async def test_file_store_leaves_no_temp_files(tmp_path):
    path = tmp_path / "sharing_state.json"
    store = FileSharingStateStore(path)

    await store.mark_sharing("sched-42")
    await store.mark_sharing("sched-99")
    await store.clear("sched-42")

    assert [p.name for p in tmp_path.iterdir()] == ["sharing_state.json"]


@pytest.mark.asyncio
async def test_file_store_corrupt_file_reads_empty(tmp_path):
    path = tmp_path / "sharing_state.json"
    path.write_text("{not json")
    store = FileSharingStateStore(path)

    assert await store.is_sharing("sched-42") is False

    await store.mark_sharing("sched-42")
    assert json.loads(path.read_text()) == {"share_location_sched-42": "true"}


@pytest.mark.asyncio
async def test_only_true_means_sharing(tmp_path, redis_client_session):
    path = tmp_path / "sharing_state.json"
    path.write_text(json.dumps({"share_location_sched-42": "false"}))
    redis_client_session.store["share_location_sched-42"] = b"yes"

    assert await FileSharingStateStore(path).is_sharing("sched-42") is False
    assert await RedisSharingStateStore(redis_client_session).is_sharing("sched-42") is False


@pytest.mark.asyncio
async def test_redis_store_decodes_bytes(redis_client_session):
    redis_client_session.store["share_location_sched-42"] = b"true"
    store = RedisSharingStateStore(redis_client_session)

    assert await store.is_sharing("sched-42") is True


@pytest.mark.asyncio
async def test_file_store_write_failure(tmp_path):
    """Disk errors surface as StateStoreError and leave nothing half-written."""
    (tmp_path / "blocker").write_text("")
    store = FileSharingStateStore(tmp_path / "blocker" / "sharing_state.json")

    with pytest.raises(StateStoreError) as exc_info:
        await store.mark_sharing("sched-42")

    assert exc_info.value.error_code == "ERR_SHARE_STATE"
    assert exc_info.value.schedule_id == "sched-42"
    assert isinstance(exc_info.value.__cause__, OSError)
    assert [p.name for p in tmp_path.iterdir()] == ["blocker"]


@pytest.mark.asyncio
async def test_redis_store_outage(mocker, redis_client_session):
    mocker.patch.object(redis_client_session, "set", side_effect=redis.ConnectionError("connection refused"))
    store = RedisSharingStateStore(redis_client_session)

    with pytest.raises(StateStoreError):
        await store.mark_sharing("sched-42")

    assert await store.is_sharing("sched-42") is False
