"""Per-connection message rate limiting.

Fixed window counter: the first message after a window expires opens a new
window of `window_ms` and resets the count to one. Every inbound frame is
counted, including heartbeats and frames that later fail to decode.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class RateWindow:
    """Message count for the window ending at `window_reset_at` (seconds)."""

    count: int
    window_reset_at: float


class RateLimiter:
    """Fixed-window rate limiter keyed by connection id.

    Thread-safety: Not thread-safe. Use from the event loop thread only.
    """

    def __init__(
        self,
        max_per_window: int = 50,
        window_ms: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize rate limiter.

        Args:
            max_per_window: Messages allowed per window
            window_ms: Window length in milliseconds
            clock: Monotonic time source in seconds
        """
        self.max_per_window = max_per_window
        self.window_s = window_ms / 1000.0
        self._clock = clock
        self._windows: dict[str, RateWindow] = {}

    def check_and_consume(self, connection_id: str) -> bool:
        """Count one message against the connection's window.

        Args:
            connection_id: Connection the message arrived on

        Returns:
            True if the message is within budget and may be processed
        """
        now = self._clock()
        window = self._windows.get(connection_id)

        if window is None or now > window.window_reset_at:
            window = RateWindow(count=1, window_reset_at=now + self.window_s)
            self._windows[connection_id] = window
        else:
            window.count += 1

        allowed = window.count <= self.max_per_window
        if not allowed and window.count == self.max_per_window + 1:
            # Log once per window rather than once per dropped frame
            logger.warning(
                "Rate limit exceeded",
                extra={"connection_id": connection_id, "limit": self.max_per_window},
            )
        return allowed

    def forget(self, connection_id: str) -> None:
        """Drop the window for a connection (no-op if absent)."""
        self._windows.pop(connection_id, None)

    def window_for(self, connection_id: str) -> RateWindow | None:
        return self._windows.get(connection_id)

    def __len__(self) -> int:
        return len(self._windows)
