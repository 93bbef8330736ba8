"""
Schedule live-visibility schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional


class ToggleLiveRequest(BaseModel):
    """Driver's "Go Live" switch."""
    is_live: bool = Field(..., alias="isLive")

    class Config:
        populate_by_name = True


class ScheduleLiveResponse(BaseModel):
    """Live status of a schedule."""
    schedule_id: int
    is_live: bool
    live_updated_at: Optional[datetime]
    subscribers: int  # Open tracking subscriptions on this relay
