from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable

Sleeper = Callable[[float], Awaitable[None]]


class Clock:
    """Loop-friendly time source; swapped for a fake in tests that pace output."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            # Still yield so cancellation is observed between chunks.
            await asyncio.sleep(0)
            return
        await asyncio.sleep(seconds)


CLOCK = Clock()


def monotonic() -> float:
    return CLOCK.monotonic()


async def sleep(seconds: float) -> None:
    await CLOCK.sleep(seconds)


__all__ = ["Clock", "CLOCK", "Sleeper", "monotonic", "sleep"]
