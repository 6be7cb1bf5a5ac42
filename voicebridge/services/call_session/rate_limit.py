"""Per-caller call rate limiting."""
import logging
import time
from collections import deque
from typing import Callable, Deque, Dict

logger = logging.getLogger(__name__)


class CallerRateLimiter:
    """
    Sliding-window limit on call starts per caller.

    Consulted once when a stream starts, never while audio is flowing.
    """

    def __init__(
        self,
        max_calls: int,
        window_seconds: float = 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self.clock = clock
        self._calls: Dict[str, Deque[float]] = {}

    def _cleanup(self, caller: str, now: float) -> Deque[float]:
        """Drop call timestamps that fell out of the window; forget idle callers."""
        timestamps = self._calls.get(caller)
        if timestamps is None:
            return deque()
        while timestamps and timestamps[0] <= now - self.window_seconds:
            timestamps.popleft()
        if not timestamps:
            del self._calls[caller]
        return timestamps

    def allow(self, caller: str) -> bool:
        """Record a call start for ``caller`` if it is within its limit."""
        now = self.clock()
        # Forget every caller whose window has expired
        for known in list(self._calls):
            self._cleanup(known, now)
        timestamps = self._cleanup(caller, now)
        if len(timestamps) >= self.max_calls:
            logger.warning(
                f"[RATE LIMIT] Caller over limit - Caller: {caller}, "
                f"Calls: {len(timestamps)}/{self.max_calls} in {self.window_seconds}s"
            )
            return False
        timestamps.append(now)
        self._calls[caller] = timestamps
        return True

    def get_call_count(self, caller: str) -> int:
        return len(self._cleanup(caller, self.clock()))
