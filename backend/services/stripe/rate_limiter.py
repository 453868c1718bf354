import asyncio
import time


class Throttle:
    """
    Minimum spacing between outbound calls.

    One instance belongs to one outbound client and is shared by all of its
    pagination loops, so consecutive page requests are spaced globally.
    """

    def __init__(self, requests_per_second: float = 4):
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self.min_interval = 1.0 / requests_per_second
        self.last_call = None

    async def wait(self):
        """Sleep until min_interval has passed since the previous call returned."""
        if self.last_call is not None:
            elapsed = time.monotonic() - self.last_call
            if elapsed < self.min_interval:
                await asyncio.sleep(self.min_interval - elapsed)
        self.last_call = time.monotonic()
