"""Data models for procmeter."""

from dataclasses import dataclass, field
from enum import Enum

GENERIC_ICON = "application-x-executable"


@dataclass(slots=True, frozen=True)
class CpuTotals:
    """One reading of the aggregate (or per-core) line of /proc/stat, in clock ticks."""

    user: int = 0
    nice: int = 0
    system: int = 0
    idle: int = 0
    iowait: int = 0
    irq: int = 0
    softirq: int = 0
    steal: int = 0

    @property
    def total(self) -> int:
        # guest and guest_nice are already accounted inside user and nice
        return (
            self.user
            + self.nice
            + self.system
            + self.idle
            + self.iowait
            + self.irq
            + self.softirq
            + self.steal
        )

    @property
    def busy(self) -> int:
        return self.total - self.idle - self.iowait


@dataclass(slots=True, frozen=True)
class ProcessSample:
    """Immutable snapshot of one process's CPU counters."""

    pid: int
    utime: int  # Clock ticks
    stime: int  # Clock ticks
    cmdline: str  # NUL-separated as read from the kernel
    sampled_at: float
    comm: str = ""  # Kernel short name, max 16 chars
    start_time: int = 0  # Clock ticks since boot
    rss: int = 0  # Bytes
    uid: int = -1

    @property
    def cpu_time(self) -> int:
        return self.utime + self.stime


@dataclass(slots=True, frozen=True)
class IoCounters:
    """Parsed /proc/<pid>/io. Fields missing from the file stay at zero."""

    rchar: int = 0
    wchar: int = 0
    syscr: int = 0
    syscw: int = 0
    read_bytes: int = 0
    write_bytes: int = 0
    cancelled_write_bytes: int = 0


@dataclass(slots=True, frozen=True)
class ProcessIdentity:
    """Display identity shared by every process with the same canonical name."""

    canonical_name: str
    display_name: str
    descriptor_path: str | None = None
    icon: str = GENERIC_ICON


@dataclass(slots=True, frozen=True)
class RatePair:
    """Two consecutive readings of a counter and the time between them."""

    previous: int
    current: int
    elapsed: float

    @property
    def delta(self) -> int:
        return max(0, self.current - self.previous)

    @property
    def rate(self) -> float:
        if self.elapsed <= 0:
            return 0.0
        return self.delta / self.elapsed


@dataclass(slots=True, frozen=True)
class ProcessRow:
    """One ranked entry of the published process list."""

    pid: int
    name: str  # Canonical name
    display_name: str
    icon: str
    descriptor_path: str | None
    cpu_percent: float | None  # None until a second sample exists; may exceed 100
    read_rate: float  # Bytes per second
    write_rate: float  # Bytes per second
    memory_rss: int  # Bytes
    uid: int
    command_line: str

    @property
    def pending(self) -> bool:
        return self.cpu_percent is None


@dataclass(slots=True, frozen=True)
class NetworkRates:
    """Network throughput in bytes per second, loopback excluded from the totals."""

    recv_rate: float = 0.0
    sent_rate: float = 0.0
    interfaces: dict[str, tuple[float, float]] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class SystemSnapshot:
    """Aggregated metrics record published once per tick."""

    tick: int
    timestamp: float
    cpu_percent: float | None  # None when /proc/stat could not be read this tick
    cpu_percent_per_core: tuple[float, ...]
    core_count: int
    memory_total: int
    memory_used: int
    memory_percent: float
    swap_total: int
    swap_used: int
    swap_percent: float
    network: NetworkRates
    processes: tuple[ProcessRow, ...]


class ProcessFilter(Enum):
    """Which processes a published record lists."""

    ALL = "all"
    MINE = "mine"
    GUI = "gui"

    def accepts(self, row: ProcessRow, uid: int) -> bool:
        if self is ProcessFilter.MINE:
            return row.uid == uid
        if self is ProcessFilter.GUI:
            return row.descriptor_path is not None
        return True
