"""Client-side cooldown for the resend-code control. Advisory UX only."""

import math
import time
from typing import Callable, Optional

DEFAULT_COOLDOWN_SECONDS = 60


class ResendThrottle:
    """Disables resending for a fixed countdown after each use"""

    def __init__(
        self,
        cooldown_seconds: int = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._started_at: Optional[float] = None

    def start(self) -> None:
        self._started_at = self._clock()

    def reset(self) -> None:
        self._started_at = None

    def remaining(self) -> int:
        """Whole seconds left on the countdown, 0 once it has run out"""
        if self._started_at is None:
            return 0
        left = self.cooldown_seconds - (self._clock() - self._started_at)
        if left <= 0:
            self._started_at = None
            return 0
        return math.ceil(left)

    def can_resend(self) -> bool:
        return self.remaining() == 0
