"""Retransmission timer for a single outstanding UDP tracker request."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from udptracker.utils.backoff import ExponentialBackoff

logger = logging.getLogger(__name__)


class RetryScheduler:
    """Arms the ``15 * 2^n`` timeout sequence and reports retransmit or give-up.

    The scheduler owns one single-shot timer. When it fires with attempts left,
    the attempt counter is incremented, the next timer is armed and
    ``on_timeout(attempt)`` is called so the owner can retransmit. When the
    timeout for the last attempt fires, ``on_exhausted()`` is called instead.
    """

    def __init__(
        self,
        on_exhausted: Callable[[], None],
        backoff: ExponentialBackoff | None = None,
        loop: Any | None = None,
    ):
        """Initialize the scheduler.

        Args:
            on_exhausted: Called once the final timeout elapses
            backoff: Timeout policy, BEP 15 defaults when omitted
            loop: Object providing ``call_later`` (the running loop by default)

        """
        self.backoff = backoff or ExponentialBackoff()
        self.attempt = 0
        self._on_exhausted = on_exhausted
        self._on_timeout: Callable[[int], None] | None = None
        self._loop = loop
        self._handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        """Whether a timer is currently armed."""
        return self._handle is not None

    def arm(self, on_timeout: Callable[[int], None]) -> float:
        """Start the timer for the current attempt, replacing any pending one.

        Returns:
            The timeout in seconds that was armed

        """
        self.cancel()
        self._on_timeout = on_timeout
        delay = self.backoff.next_delay(self.attempt)
        loop = self._loop or asyncio.get_running_loop()
        self._handle = loop.call_later(delay, self._fire)
        logger.debug("Armed retry timer: attempt=%d timeout=%.0fs", self.attempt, delay)
        return delay

    def cancel(self) -> None:
        """Stop the pending timer, if any."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def reset(self) -> None:
        """Cancel the timer and start counting attempts from zero."""
        self.cancel()
        self.attempt = 0

    def _fire(self) -> None:
        self._handle = None
        if self.backoff.exhausted(self.attempt):
            logger.debug("Retry budget exhausted after attempt %d", self.attempt)
            self._on_exhausted()
            return

        on_timeout = self._on_timeout
        if on_timeout is None:  # pragma: no cover - arm() always sets it
            return
        self.attempt += 1
        # on_timeout may cancel or replace this timer
        self.arm(on_timeout)
        on_timeout(self.attempt)
