"""
Cancellable grace period before a destructive run.

The sleep function is injected so tests can drive the countdown without
waiting. Cancellation comes either from cancel() or from the surrounding task
being cancelled (Ctrl+C under asyncio.run); both surface as CountdownCancelled
and nothing after the countdown runs.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from shaka_sync.errors import CountdownCancelled

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class Countdown:
    def __init__(
        self,
        seconds: float,
        sleep: SleepFn = asyncio.sleep,
        on_tick: Optional[Callable[[float], None]] = None,
        interval: float = 1.0,
    ) -> None:
        if seconds < 0:
            raise ValueError("seconds must be >= 0")
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.seconds = seconds
        self.sleep = sleep
        self.on_tick = on_tick
        self.interval = interval
        self.remaining = seconds
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def run(self) -> None:
        self.remaining = self.seconds
        try:
            while self.remaining > 0:
                if self._cancelled:
                    raise CountdownCancelled("countdown cancelled")
                if self.on_tick:
                    self.on_tick(self.remaining)
                step = min(self.interval, self.remaining)
                await self.sleep(step)
                self.remaining -= step
        except asyncio.CancelledError as exc:
            self._cancelled = True
            raise CountdownCancelled("countdown interrupted") from exc

        if self._cancelled:
            raise CountdownCancelled("countdown cancelled")
        logger.debug("Countdown of %.1fs elapsed", self.seconds)
