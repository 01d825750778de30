"""
Polling backoff policy with an injectable clock
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Iterator


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Configuration for status polling

    Delays start at ``initial_delay`` and grow by ``multiplier`` each poll,
    never exceeding ``max_delay``. Polling stops once ``deadline`` seconds of
    wall-clock time have elapsed.
    """
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 10.0
    deadline: float = 300.0

    def delays(self) -> Iterator[float]:
        """Endless, non-decreasing sequence of delays."""
        delay = self.initial_delay
        while True:
            yield min(delay, self.max_delay)
            delay = min(delay * self.multiplier, self.max_delay)


class Clock:
    """Real time source. Tests substitute a fake that advances instantly."""

    def monotonic(self) -> float:
        return time.monotonic()

    def epoch_millis(self) -> int:
        return int(time.time() * 1000)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


system_clock = Clock()
