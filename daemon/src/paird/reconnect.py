"""Reconnect backoff policy and cancellable retry timers.

ReconnectScheduler is stateless and shared by every session. It answers
one question per disruption: retry after how long, or not at all.
RetryTimer is the armed retry itself; each session holds at most one.
"""

import asyncio
import logging
import math
from enum import Enum, auto
from typing import Callable, Optional

from paird.config import ReconnectConfig
from paird.disconnect import DisconnectPolicy

logger = logging.getLogger(__name__)

# Floor for any computed delay; a retry is never scheduled immediately
MIN_DELAY = 0.001


class TimerState(Enum):
    """Retry timer states."""

    ARMED = auto()
    FIRED = auto()
    CANCELLED = auto()


class RetryTimer:
    """A one-shot timer that can be cancelled synchronously.

    Once cancel() returns, the callback is guaranteed not to run.
    """

    def __init__(
        self,
        delay: float,
        callback: Callable[["RetryTimer"], None],
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.delay = delay
        self.state = TimerState.ARMED
        self._callback = callback
        loop = loop or asyncio.get_running_loop()
        self._handle = loop.call_later(delay, self._fire)

    @property
    def armed(self) -> bool:
        return self.state is TimerState.ARMED

    def cancel(self) -> bool:
        """Disarm the timer.

        Returns:
            True if the timer was armed, False if it already fired or
            was cancelled.
        """
        if self.state is not TimerState.ARMED:
            return False
        self.state = TimerState.CANCELLED
        self._handle.cancel()
        return True

    def _fire(self) -> None:
        if self.state is not TimerState.ARMED:
            return
        self.state = TimerState.FIRED
        self._callback(self)


class ReconnectScheduler:
    """Exponential backoff policy for reconnecting sessions.

    delay = min(base_delay * multiplier ** (attempt - 1), max_delay)
    """

    def __init__(
        self,
        config: Optional[ReconnectConfig] = None,
        policy: Optional[DisconnectPolicy] = None,
    ):
        """Initialize scheduler.

        Args:
            config: Backoff settings. Defaults to ReconnectConfig().
            policy: Disconnect classification. Defaults to the built-in table.
        """
        self.config = config or ReconnectConfig()
        self.policy = policy or DisconnectPolicy()

    def delay_for(self, attempt: int, reason: Optional[int]) -> Optional[float]:
        """Decide whether and when to retry.

        Args:
            attempt: Consecutive disruption count, including this one (>= 1).
            reason: Transport status code of the disruption.

        Returns:
            Delay in seconds before the next attempt, or None for no retry.
        """
        if self.policy.classify(reason).is_terminal:
            return None

        max_attempts = self.config.max_attempts
        if max_attempts is not None and attempt > max_attempts:
            return None

        delay = self.config.base_delay * (self.config.multiplier ** self._exponent(attempt))
        return max(min(delay, self.config.max_delay), MIN_DELAY)

    def _exponent(self, attempt: int) -> int:
        """Backoff exponent for attempt, stopped once max_delay is reached.

        Unbounded attempts would otherwise overflow the float power.
        """
        exponent = max(attempt, 1) - 1
        base = self.config.base_delay
        multiplier = self.config.multiplier
        if base <= 0 or multiplier <= 1.0 or self.config.max_delay <= base:
            return 0
        ceiling = math.ceil(math.log(self.config.max_delay / base, multiplier))
        return min(exponent, ceiling)

    def arm(
        self, delay: float, callback: Callable[[RetryTimer], None]
    ) -> RetryTimer:
        """Schedule a retry on the running event loop."""
        return RetryTimer(max(delay, MIN_DELAY), callback)
