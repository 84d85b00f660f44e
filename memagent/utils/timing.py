"""Wall-clock helpers for per-stage timings and the optional request deadline."""

import time


def elapsed_ms(start: float) -> float:
    """Milliseconds since a time.perf_counter() reading, rounded to 0.01 ms."""
    return round((time.perf_counter() - start) * 1000, 2)


class Stopwatch:
    """
    Measures one stage.

        with Stopwatch() as sw:
            await do_work()
        sw.ms  # duration in milliseconds
    """

    def __init__(self):
        self._start: float | None = None
        self.ms: float = 0.0

    def __enter__(self) -> "Stopwatch":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.ms = elapsed_ms(self._start)


class Deadline:
    """
    An optional overall deadline, checked between pipeline stages.

    A Deadline built from None never expires.
    """

    def __init__(self, budget_ms: float | None):
        self.budget_ms = budget_ms
        self._expires_at = None if budget_ms is None else time.monotonic() + budget_ms / 1000

    def expired(self) -> bool:
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    def remaining(self) -> float | None:
        """Seconds left, or None when there is no deadline."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def cap(self, timeout: float) -> float:
        """Shrink a per-call timeout so it does not outlive the deadline."""
        remaining = self.remaining()
        if remaining is None:
            return timeout
        return max(0.001, min(timeout, remaining))
