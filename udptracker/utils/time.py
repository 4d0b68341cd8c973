"""Time/clock abstraction to aid testability."""

from __future__ import annotations

import time as _time


class Clock:
    """Clock abstraction to aid testability."""

    def now(self) -> float:
        """Return current monotonic time in seconds."""
        return _time.monotonic()
