"""Sampling scheduler for procmeter."""

import os
import threading
import time
from collections import deque
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from queue import Empty, Full, Queue

import psutil
import structlog

from procmeter.cache import IdentityCache
from procmeter.identity import IdentityResolver
from procmeter.models import (
    CpuTotals,
    IoCounters,
    NetworkRates,
    ProcessFilter,
    ProcessRow,
    ProcessSample,
    SystemSnapshot,
)
from procmeter.procfs import ProcError, ProcessGone, ProcParseError, ProcReader
from procmeter.rates import (
    RateCalculator,
    counter_rate,
    cpu_percent,
    system_cpu_percent,
    total_cpu_delta,
)

log = structlog.get_logger()

LOOPBACK_INTERFACES = frozenset({"lo"})

Subscriber = Callable[[SystemSnapshot], None]


class MonitorState(Enum):
    """Lifecycle of one tick."""

    IDLE = "idle"
    SAMPLING = "sampling"
    PUBLISHED = "published"


@dataclass(slots=True)
class RetainedSample:
    """Last successful reading of a pid, kept to rate the next one."""

    sample: ProcessSample
    io: IoCounters
    totals: CpuTotals | None
    missed: int = 0


class SystemMonitor:
    """
    Periodic sampler that turns /proc counters into published metric records.

    Runs in a separate daemon thread. Each tick reads system and per-process
    counters, computes rates against the previous tick and publishes one
    immutable SystemSnapshot to the queue and to subscribers. Processes that
    exit mid-tick are dropped from that tick's record; nothing read from /proc
    stops the loop.
    """

    def __init__(
        self,
        update_queue: Queue[SystemSnapshot] | None = None,
        poll_rate: float = 2.0,
        *,
        reader: ProcReader | None = None,
        cache: IdentityCache | None = None,
        core_count: int | None = None,
        process_filter: ProcessFilter = ProcessFilter.ALL,
        top: int = 0,
        workers: int = 0,
        net_counters: Callable[..., dict] | None = None,
        memory: Callable[[], object] | None = None,
        swap: Callable[[], object] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the SystemMonitor.

        Args:
            update_queue: Queue records are pushed to. When it is full the
                oldest record is dropped, so a Queue(maxsize=1) always holds
                the latest one.
            poll_rate: Seconds between ticks. Default 2.0s.
            reader: Proc filesystem reader, /proc by default.
            cache: Identity cache; a resolver with an empty descriptor index
                is used when omitted.
            core_count: Multiplier for per-process CPU percentages.
            process_filter: Which processes the published list contains.
            top: Keep only the first `top` ranked processes (0 keeps all).
            workers: Threads used to read pids in parallel (0 reads inline).
            net_counters: Replacement for psutil.net_io_counters.
            memory: Replacement for psutil.virtual_memory.
            swap: Replacement for psutil.swap_memory.
            clock: Monotonic time source.
        """
        self._queue = update_queue
        self._poll_rate = poll_rate
        self._reader = reader if reader is not None else ProcReader()
        self._cache = cache if cache is not None else IdentityCache(IdentityResolver())
        self._core_count = core_count or psutil.cpu_count() or 1
        self._filter = process_filter
        self._top = max(0, top)
        self._workers = max(0, workers)
        self._net_counters = net_counters or psutil.net_io_counters
        self._memory = memory or psutil.virtual_memory
        self._swap = swap or psutil.swap_memory
        self._clock = clock
        self._uid = os.getuid()

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._tick_lock = threading.Lock()
        self._executor: ThreadPoolExecutor | None = None
        self._subscribers: list[Subscriber] = []

        self._state = MonitorState.IDLE
        self._tick = 0
        self._latest: SystemSnapshot | None = None
        self._totals: CpuTotals | None = None
        self._core_totals: list[CpuTotals] = []
        self._retained: dict[int, RetainedSample] = {}
        self._names: dict[int, str] = {}
        self._net = RateCalculator()
        self._cpu_history: deque[float] = deque(maxlen=60)

    @property
    def poll_rate(self) -> float:
        """Get the current poll rate."""
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        """Set the poll rate."""
        self._poll_rate = max(0.1, value)  # Minimum 0.1 seconds

    @property
    def is_running(self) -> bool:
        """Check if the monitor thread is running."""
        return self._thread is not None and self._thread.is_alive()

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def latest(self) -> SystemSnapshot | None:
        """Most recently published record."""
        return self._latest

    @property
    def core_count(self) -> int:
        return self._core_count

    @property
    def cache(self) -> IdentityCache:
        return self._cache

    @property
    def process_filter(self) -> ProcessFilter:
        return self._filter

    @process_filter.setter
    def process_filter(self, value: ProcessFilter) -> None:
        self._filter = value

    def subscribe(self, callback: Subscriber) -> None:
        """Call `callback` with every published record."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def start(self) -> None:
        """Start the monitoring thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="SystemMonitor",
        )
        self._thread.start()
        log.info("monitor_started", poll_rate=self._poll_rate, workers=self._workers)

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the monitoring thread.

        A tick already in progress runs to completion; no new tick starts.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
            log.info("monitor_stopped", ticks=self._tick)
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def _poll_loop(self) -> None:
        """Main polling loop running in the background thread."""
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                log.exception("tick_failed")

            # Wait for poll_rate seconds or until stop is requested
            self._stop_event.wait(timeout=self._poll_rate)

    def tick(self) -> SystemSnapshot:
        """Run one sampling cycle and publish its record."""
        with self._tick_lock:
            started = self._clock()
            self._state = MonitorState.SAMPLING
            self._tick += 1
            try:
                snapshot = self._collect_snapshot(started)
                self._publish(snapshot)
            finally:
                self._state = MonitorState.IDLE
            log.debug(
                "tick",
                tick=snapshot.tick,
                processes=len(snapshot.processes),
                duration=round(self._clock() - started, 4),
            )
            return snapshot

    def _collect_snapshot(self, now: float) -> SystemSnapshot:
        """Collect a record of the current system state."""
        totals = self._read_totals()
        if totals is not None and self._totals is not None:
            system_percent: float | None = system_cpu_percent(self._totals, totals)
            self._cpu_history.append(system_percent)
        else:
            system_percent = None
        processes = self._collect_processes(now, totals)
        self._totals = totals

        mem_total, mem_used, mem_percent = self._read_memory(self._memory)
        swap_total, swap_used, swap_percent = self._read_memory(self._swap)

        return SystemSnapshot(
            tick=self._tick,
            timestamp=time.time(),
            cpu_percent=system_percent,
            cpu_percent_per_core=self._collect_cores(),
            core_count=self._core_count,
            memory_total=mem_total,
            memory_used=mem_used,
            memory_percent=mem_percent,
            swap_total=swap_total,
            swap_used=swap_used,
            swap_percent=swap_percent,
            network=self._collect_network(now),
            processes=processes,
        )

    def _read_totals(self) -> CpuTotals | None:
        try:
            return self._reader.read_cpu_totals()
        except ProcParseError as e:
            log.warning("cpu_totals_malformed", error=str(e))
        except ProcError as e:
            log.warning("cpu_totals_unreadable", error=str(e))
        return None

    def _collect_cores(self) -> tuple[float, ...]:
        try:
            cores = self._reader.read_per_core_totals()
        except ProcError as e:
            log.warning("cpu_cores_unreadable", error=str(e))
            cores = []
        previous = self._core_totals
        self._core_totals = cores
        if len(previous) != len(cores):
            return ()
        return tuple(system_cpu_percent(before, after) for before, after in zip(previous, cores))

    @staticmethod
    def _read_memory(source: Callable[[], object]) -> tuple[int, int, float]:
        try:
            info = source()
        except (OSError, RuntimeError) as e:
            log.warning("memory_unreadable", error=str(e))
            return 0, 0, 0.0
        return int(info.total), int(info.used), float(info.percent)

    def _collect_network(self, now: float) -> NetworkRates:
        try:
            counters = self._net_counters(pernic=True)
        except (OSError, RuntimeError) as e:
            log.warning("network_unreadable", error=str(e))
            return NetworkRates()

        interfaces: dict[str, tuple[float, float]] = {}
        recv_total = sent_total = 0.0
        for name, io in counters.items():
            recv = self._net.update(f"{name}:recv", io.bytes_recv, now) or 0.0
            sent = self._net.update(f"{name}:sent", io.bytes_sent, now) or 0.0
            interfaces[name] = (recv, sent)
            if name not in LOOPBACK_INTERFACES:
                recv_total += recv
                sent_total += sent

        for stream in self._net.streams():
            if stream.rsplit(":", 1)[0] not in counters:
                self._net.forget(stream)

        return NetworkRates(recv_rate=recv_total, sent_rate=sent_total, interfaces=interfaces)

    def _read_pid(self, pid: int, now: float) -> tuple[ProcessSample, IoCounters] | None:
        retained = self._retained.get(pid)
        try:
            sample = self._reader.read_process_sample(pid, now)
            io = self._reader.read_io_counters(pid, retained.io if retained else None)
        except ProcessGone:
            log.debug("process_gone", pid=pid)
            return None
        except ProcError as e:
            log.debug("process_unreadable", pid=pid, error=str(e))
            return None
        return sample, io

    def _read_pids(self, pids: list[int], now: float) -> list[tuple[ProcessSample, IoCounters] | None]:
        if self._workers <= 1 or len(pids) < 2:
            return [self._read_pid(pid, now) for pid in pids]
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self._workers, thread_name_prefix="SystemMonitorReader"
            )
        return list(self._executor.map(lambda pid: self._read_pid(pid, now), pids))

    def _collect_processes(self, now: float, totals: CpuTotals | None) -> tuple[ProcessRow, ...]:
        """
        Sample every listed pid and rate it against its retained sample.

        Pids seen for the first time are published with a pending CPU
        percentage. A pid missing from one tick keeps its retained sample for
        one more tick before it is forgotten.
        """
        try:
            pids = self._reader.list_pids()
        except ProcError as e:
            log.warning("pid_list_unreadable", error=str(e))
            pids = []

        rows: list[ProcessRow] = []
        seen: set[int] = set()
        for result in self._read_pids(pids, now):
            if result is None:
                continue
            sample, io = result
            seen.add(sample.pid)
            rows.append(self._rate_process(sample, io, totals))

        for pid in list(self._retained):
            if pid in seen:
                continue
            retained = self._retained[pid]
            retained.missed += 1
            if retained.missed > 1:
                del self._retained[pid]
                self._names.pop(pid, None)

        rows = [row for row in rows if self._filter.accepts(row, self._uid)]
        rows.sort(key=lambda row: (-(row.cpu_percent or 0.0), row.pid))
        if self._top:
            rows = rows[: self._top]
        return tuple(rows)

    def _rate_process(
        self, sample: ProcessSample, io: IoCounters, totals: CpuTotals | None
    ) -> ProcessRow:
        pid = sample.pid
        retained = self._retained.get(pid)
        if retained is not None and retained.sample.start_time != sample.start_time:
            # pid reused by a new process
            log.debug("pid_reused", pid=pid)
            retained = None
            self._names.pop(pid, None)

        percent: float | None = None
        read_rate = write_rate = 0.0
        if retained is not None:
            if totals is not None and retained.totals is not None:
                percent = cpu_percent(
                    retained.sample,
                    sample,
                    total_cpu_delta(retained.totals, totals),
                    self._core_count,
                )
            elapsed = sample.sampled_at - retained.sample.sampled_at
            read_rate = counter_rate(retained.io.read_bytes, io.read_bytes, elapsed)
            write_rate = counter_rate(retained.io.write_bytes, io.write_bytes, elapsed)
        self._retained[pid] = RetainedSample(sample=sample, io=io, totals=totals)

        name = self._names.get(pid)
        if name is None:
            name = self._cache.resolver.canonical_name(sample.cmdline, sample.comm)
            self._names[pid] = name
        identity = self._cache.get(name)

        return ProcessRow(
            pid=pid,
            name=name,
            display_name=identity.display_name,
            icon=identity.icon,
            descriptor_path=identity.descriptor_path,
            cpu_percent=percent,
            read_rate=read_rate,
            write_rate=write_rate,
            memory_rss=sample.rss,
            uid=sample.uid,
            command_line=sample.cmdline.replace("\0", " ").strip(),
        )

    def _publish(self, snapshot: SystemSnapshot) -> None:
        self._latest = snapshot
        self._state = MonitorState.PUBLISHED
        if self._queue is not None:
            try:
                self._queue.put_nowait(snapshot)
            except Full:
                # Slow consumer: replace the stale record
                try:
                    self._queue.get_nowait()
                except Empty:
                    pass
                self._queue.put_nowait(snapshot)
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                log.exception("subscriber_failed", callback=getattr(callback, "__name__", repr(callback)))

    def get_cpu_history(self) -> list[float]:
        """Get the system CPU usage history."""
        return list(self._cpu_history)
