"""
Schedule visibility sync.

When a driver starts or stops sharing, the schedule's "live" flag on the
server follows along so passengers know whether to expect bus positions.
The sync is advisory: failures are logged and never affect the session.
"""

import logging
from typing import Optional

import httpx

from busline.app.core.config import settings

logger = logging.getLogger("busline.sharing")


class ScheduleVisibilityClient:
    """Calls ``POST /v1/schedules/{id}/toggle-live`` on behalf of a driver."""

    def __init__(
        self,
        base_url: str,
        token: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 5.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._client = client
        self.timeout = timeout

    async def set_live(self, schedule_id: str, is_live: bool) -> bool:
        url = f"{self.base_url}/{settings.api_version}/schedules/{schedule_id}/toggle-live"
        headers = {"Authorization": f"Bearer {self.token}"}
        try:
            if self._client is not None:
                response = await self._client.post(url, json={"isLive": is_live}, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json={"isLive": is_live}, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Visibility sync failed for schedule %s: %s", schedule_id, e)
            return False

        logger.debug("Schedule %s visibility set to live=%s", schedule_id, is_live)
        return True
