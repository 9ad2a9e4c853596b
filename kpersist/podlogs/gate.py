"""RetryGate: wakes a dormant pod follower or tells it to stop.

The gate is a single-slot channel.  ``hint()`` leaves a RETRY signal in the
slot, ``stop()`` leaves a STOP signal that can never be replaced.  Because
the signal is stored rather than broadcast, a hint sent while the follower
is busy streaming logs is still seen when it next waits.  Several hints
coalesce into one.
"""

from __future__ import annotations

import asyncio

from kpersist.models.events import RetrySignal


class RetryGate:
    def __init__(self) -> None:
        self._slot: RetrySignal | None = None
        self._ready = asyncio.Event()

    @property
    def can_retry(self) -> bool:
        """True until stop() has been called, false forever after."""
        return self._slot is not RetrySignal.STOP

    def hint(self) -> bool:
        """Ask the follower to try again. Returns False once stopped."""
        if not self.can_retry:
            return False
        self._slot = RetrySignal.RETRY
        self._ready.set()
        return True

    def stop(self) -> bool:
        """Forbid further attempts. Returns False if already stopped."""
        if not self.can_retry:
            return False
        self._slot = RetrySignal.STOP
        self._ready.set()
        return True

    def clear_hint(self) -> None:
        """Drop a pending RETRY hint; a STOP is never dropped."""
        if self._slot is RetrySignal.RETRY:
            self._slot = None
            self._ready.clear()

    async def wait(self) -> RetrySignal:
        """Block until a signal is in the slot and take it.

        A RETRY hint is consumed by the call that returns it; STOP stays.
        """
        await self._ready.wait()
        signal = self._slot
        if signal is None:
            raise RuntimeError("Retry gate woke up without a signal")
        if signal is RetrySignal.RETRY:
            self._slot = None
            self._ready.clear()
        return signal
