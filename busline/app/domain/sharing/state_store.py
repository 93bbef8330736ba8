"""
Sharing-State Store.

Durable, device-local record of "am I sharing my location for schedule X".
One flag per schedule under ``share_location_<scheduleId>`` holding
``"true"``; presence means sharing. The publisher reads it once at startup
and writes it on every start/stop. It is consent state of this device and is
never synced anywhere else.

Backends report I/O failures as ``StateStoreError`` so the publisher can
handle them like any other sharing failure.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, List

import redis.asyncio as redis

from busline.app.core import sharing_config
from busline.app.domain.sharing.errors import StateStoreError

logger = logging.getLogger("busline.sharing")


def sharing_key(schedule_id: str) -> str:
    return f"{sharing_config.SHARE_FLAG_PREFIX}{schedule_id}"


@contextmanager
def _wrap_errors(errors, action: str, schedule_id=None):
    try:
        yield
    except errors as e:
        logger.error("Sharing state %s failed for schedule %s: %s", action, schedule_id, e)
        raise StateStoreError(f"Could not {action} sharing state: {e}", schedule_id=schedule_id) from e


class SharingStateStore(ABC):
    """Key-value persistence of one boolean flag per schedule."""

    @abstractmethod
    async def is_sharing(self, schedule_id: str) -> bool:
        ...

    @abstractmethod
    async def mark_sharing(self, schedule_id: str) -> None:
        ...

    @abstractmethod
    async def clear(self, schedule_id: str) -> None:
        ...

    @abstractmethod
    async def sharing_schedules(self) -> List[str]:
        """Schedules with a persisted flag, for resuming at startup."""


class MemorySharingStateStore(SharingStateStore):
    """Process-local store. Forgets everything on exit."""

    def __init__(self):
        self.values: Dict[str, str] = {}

    async def is_sharing(self, schedule_id: str) -> bool:
        return self.values.get(sharing_key(schedule_id)) == sharing_config.SHARE_FLAG_VALUE

    async def mark_sharing(self, schedule_id: str) -> None:
        self.values[sharing_key(schedule_id)] = sharing_config.SHARE_FLAG_VALUE

    async def clear(self, schedule_id: str) -> None:
        self.values.pop(sharing_key(schedule_id), None)

    async def sharing_schedules(self) -> List[str]:
        return _schedules_from_keys(self.values)


class FileSharingStateStore(SharingStateStore):
    """
    JSON file store, the device-local default.

    The whole file is rewritten on each change through a temporary file and
    ``os.replace`` so a crash never leaves a half-written file behind.
    """

    def __init__(self, path=sharing_config.DEFAULT_STORE_PATH):
        self.path = Path(path).expanduser()

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except ValueError:
            logger.warning("Sharing state file %s is corrupt, starting empty", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, values: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".sharing-", suffix=".json")
        try:
            with os.fdopen(fd, "w") as fh:
                json.dump(values, fh, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except BaseException:
            os.unlink(tmp_path)
            raise

    async def is_sharing(self, schedule_id: str) -> bool:
        with _wrap_errors(OSError, "read", schedule_id):
            return self._load().get(sharing_key(schedule_id)) == sharing_config.SHARE_FLAG_VALUE

    async def mark_sharing(self, schedule_id: str) -> None:
        with _wrap_errors(OSError, "write", schedule_id):
            values = self._load()
            values[sharing_key(schedule_id)] = sharing_config.SHARE_FLAG_VALUE
            self._save(values)

    async def clear(self, schedule_id: str) -> None:
        with _wrap_errors(OSError, "clear", schedule_id):
            values = self._load()
            if values.pop(sharing_key(schedule_id), None) is not None:
                self._save(values)

    async def sharing_schedules(self) -> List[str]:
        with _wrap_errors(OSError, "read"):
            return _schedules_from_keys(self._load())


class RedisSharingStateStore(SharingStateStore):
    """Store backed by a redis on the device (kiosk and on-board units)."""

    def __init__(self, client):
        self.client = client

    async def is_sharing(self, schedule_id: str) -> bool:
        with _wrap_errors(redis.RedisError, "read", schedule_id):
            value = await self.client.get(sharing_key(schedule_id))
        if isinstance(value, bytes):
            value = value.decode()
        return value == sharing_config.SHARE_FLAG_VALUE

    async def mark_sharing(self, schedule_id: str) -> None:
        with _wrap_errors(redis.RedisError, "write", schedule_id):
            await self.client.set(sharing_key(schedule_id), sharing_config.SHARE_FLAG_VALUE)

    async def clear(self, schedule_id: str) -> None:
        with _wrap_errors(redis.RedisError, "clear", schedule_id):
            await self.client.delete(sharing_key(schedule_id))

    async def sharing_schedules(self) -> List[str]:
        keys = []
        with _wrap_errors(redis.RedisError, "read"):
            async for key in self.client.scan_iter(match=f"{sharing_config.SHARE_FLAG_PREFIX}*"):
                keys.append(key.decode() if isinstance(key, bytes) else key)
        return sorted(k[len(sharing_config.SHARE_FLAG_PREFIX):] for k in keys)


def _schedules_from_keys(values: Dict[str, str]) -> List[str]:
    prefix = sharing_config.SHARE_FLAG_PREFIX
    return sorted(
        key[len(prefix):]
        for key, value in values.items()
        if key.startswith(prefix) and value == sharing_config.SHARE_FLAG_VALUE
    )
