"""Conversion of monotonic kernel counters into point-in-time rates."""

from procmeter.models import CpuTotals, ProcessSample, RatePair


def counter_delta(previous: int, current: int) -> int:
    """Difference between two readings of a counter; a reset counts as zero."""
    return max(0, current - previous)


def counter_rate(previous: int, current: int, elapsed: float) -> float:
    """Per-second rate of a counter over `elapsed` seconds."""
    return RatePair(previous, current, elapsed).rate


def total_cpu_delta(before: CpuTotals, after: CpuTotals) -> int:
    """Clock ticks elapsed on all CPUs between two /proc/stat readings."""
    return counter_delta(before.total, after.total)


def cpu_percent(
    before: ProcessSample,
    after: ProcessSample,
    total_delta: int,
    core_count: int,
) -> float:
    """
    CPU usage of a process between two samples.

    The result is a percentage of one core: it is multiplied by the core count,
    so a multi-threaded process can report more than 100. It is never capped.

    Args:
        before: Earlier sample of the process.
        after: Later sample of the same process.
        total_delta: total_cpu_delta() over the same two instants.
        core_count: Number of configured CPUs.

    Returns:
        0.0 when no CPU time elapsed system-wide or when the process counters
        went backwards (pid reuse), otherwise the usage percentage.
    """
    if total_delta <= 0:
        return 0.0
    process_delta = after.cpu_time - before.cpu_time
    if process_delta < 0:
        return 0.0
    return (process_delta / total_delta) * 100.0 * core_count


def system_cpu_percent(before: CpuTotals, after: CpuTotals) -> float:
    """Share of non-idle time between two readings, 0-100."""
    total = total_cpu_delta(before, after)
    if total == 0:
        return 0.0
    busy = counter_delta(before.busy, after.busy)
    return min(100.0, busy / total * 100.0)


class RateCalculator:
    """
    Per-stream rate state.

    Holds the last reading of each named counter stream (a network interface,
    a disk) and turns the next reading into a rate. The pair for a stream is
    replaced wholesale on every update.
    """

    def __init__(self) -> None:
        self._last: dict[str, tuple[int, float]] = {}
        self._pairs: dict[str, RatePair] = {}

    def update(self, stream: str, value: int, now: float) -> float | None:
        """Record a reading; returns the rate, or None for the first reading."""
        last = self._last.get(stream)
        self._last[stream] = (value, now)
        if last is None:
            return None
        previous, then = last
        pair = RatePair(previous=previous, current=value, elapsed=now - then)
        self._pairs[stream] = pair
        return pair.rate

    def pair(self, stream: str) -> RatePair | None:
        return self._pairs.get(stream)

    def forget(self, stream: str) -> None:
        self._last.pop(stream, None)
        self._pairs.pop(stream, None)

    def streams(self) -> list[str]:
        return list(self._last)
