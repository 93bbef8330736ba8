"""
Reliability Utilities.

Bounded exponential backoff used by the location publisher when it is
configured to re-establish a dropped tracking channel.
"""

from busline.app.core import sharing_config


class ReconnectPolicy:
    """
    Bounded-retry policy with exponential backoff.

    Attempt ``n`` (0-based) waits ``base_delay * 2**n`` seconds, capped at
    ``max_delay``. ``max_retries == 0`` disables reconnection: every channel
    loss is terminal for the sharing session.
    """
    def __init__(
        self,
        max_retries: int = sharing_config.RECONNECT_MAX_RETRIES,
        base_delay: float = sharing_config.RECONNECT_BASE_DELAY,
        max_delay: float = sharing_config.RECONNECT_MAX_DELAY,
    ):
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay

    @property
    def enabled(self) -> bool:
        return self.max_retries > 0

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_retries

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    def __repr__(self):
        return (
            f"<ReconnectPolicy(max_retries={self.max_retries}, "
            f"base_delay={self.base_delay}, max_delay={self.max_delay})>"
        )


NO_RECONNECT = ReconnectPolicy(max_retries=0)
