"""Readers for the kernel pseudo-files under /proc.

Every read opens the file, consumes it and closes it again; no handle outlives
the call. A process that exits between being listed and being read surfaces as
ProcessGone so the caller can drop it for the current tick.
"""

import os
from pathlib import Path

from procmeter.models import CpuTotals, IoCounters, ProcessSample

# Order of the numeric columns on the cpu lines of /proc/stat
CPU_FIELDS = ("user", "nice", "system", "idle", "iowait", "irq", "softirq", "steal")

# Keys of /proc/<pid>/io, named as the IoCounters fields
IO_FIELDS = (
    "rchar",
    "wchar",
    "syscr",
    "syscw",
    "read_bytes",
    "write_bytes",
    "cancelled_write_bytes",
)

# Field offsets in /proc/<pid>/stat counted from the state field after the comm
STAT_UTIME = 11
STAT_STIME = 12
STAT_STARTTIME = 19
STAT_RSS = 21


class ProcError(Exception):
    """Base class for /proc access failures."""


class ProcReadError(ProcError):
    """A pseudo-file is missing or unreadable."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class ProcessGone(ProcReadError):
    """The process exited before its files could be read."""

    def __init__(self, pid: int, path: Path) -> None:
        super().__init__(path, "no such process")
        self.pid = pid


class ProcParseError(ProcError, ValueError):
    """A counter line did not have the expected format."""


def _page_size() -> int:
    try:
        return os.sysconf("SC_PAGE_SIZE")
    except (ValueError, OSError, AttributeError):
        return 4096


class ProcReader:
    """Stateless reader for one proc filesystem root."""

    def __init__(self, proc_root: str | Path = "/proc", page_size: int | None = None) -> None:
        self._root = Path(proc_root)
        self._page_size = page_size or _page_size()

    @property
    def root(self) -> Path:
        return self._root

    def _read_text(self, path: Path, pid: int | None = None) -> str:
        try:
            with open(path, "rb") as f:
                data = f.read()
        except (FileNotFoundError, ProcessLookupError, NotADirectoryError) as e:
            if pid is not None:
                raise ProcessGone(pid, path) from e
            raise ProcReadError(path, e.strerror or "not found") from e
        except OSError as e:
            raise ProcReadError(path, e.strerror or str(e)) from e
        return data.decode("utf-8", errors="replace")

    def _stat_lines(self) -> list[str]:
        return self._read_text(self._root / "stat").splitlines()

    def read_cpu_totals(self) -> CpuTotals:
        """Read the aggregate `cpu ` line of /proc/stat."""
        for line in self._stat_lines():
            if line.startswith("cpu "):
                return parse_cpu_line(line)
        raise ProcParseError("missing aggregate cpu line in stat")

    def read_per_core_totals(self) -> list[CpuTotals]:
        """Read the `cpuN` lines of /proc/stat, ordered by core number."""
        cores: list[tuple[int, CpuTotals]] = []
        for line in self._stat_lines():
            if not line.startswith("cpu") or line.startswith("cpu "):
                continue
            label = line.split(maxsplit=1)[0]
            try:
                index = int(label[3:])
            except ValueError:
                continue
            cores.append((index, parse_cpu_line(line)))
        cores.sort(key=lambda item: item[0])
        return [totals for _, totals in cores]

    def read_cmdline(self, pid: int) -> str:
        """Return the raw, NUL-separated command line of a process."""
        return self._read_text(self._root / str(pid) / "cmdline", pid)

    def read_io_counters(self, pid: int, previous: IoCounters | None = None) -> IoCounters:
        """Read /proc/<pid>/io.

        Lines that are missing or malformed leave the matching field at its
        previous value (or zero). The file is only readable by the owner of the
        process and is absent on kernels without io accounting; in both cases
        the previous counters are returned unchanged.
        """
        base = previous or IoCounters()
        pid_dir = self._root / str(pid)
        try:
            content = self._read_text(pid_dir / "io", pid)
        except ProcessGone:
            # kernels without task io accounting have no io file at all
            if pid_dir.is_dir():
                return base
            raise
        except ProcReadError:
            return base
        return parse_io(content, base)

    def read_process_sample(self, pid: int, now: float) -> ProcessSample:
        """Read the CPU counters, command line and owner of a process."""
        pid_dir = self._root / str(pid)
        stat_path = pid_dir / "stat"
        comm, fields = parse_pid_stat(self._read_text(stat_path, pid), stat_path)
        try:
            cmdline = self.read_cmdline(pid)
        except ProcessGone:
            raise
        except ProcReadError:
            cmdline = ""
        try:
            uid = pid_dir.stat().st_uid
        except FileNotFoundError as e:
            raise ProcessGone(pid, pid_dir) from e
        except OSError as e:
            raise ProcReadError(pid_dir, e.strerror or str(e)) from e
        try:
            return ProcessSample(
                pid=pid,
                utime=int(fields[STAT_UTIME]),
                stime=int(fields[STAT_STIME]),
                cmdline=cmdline,
                sampled_at=now,
                comm=comm,
                start_time=int(fields[STAT_STARTTIME]),
                rss=max(0, int(fields[STAT_RSS])) * self._page_size,
                uid=uid,
            )
        except (IndexError, ValueError) as e:
            raise ProcParseError(f"{stat_path}: {e}") from e

    def list_pids(self) -> list[int]:
        """List the numeric entries of the proc root."""
        try:
            names = os.listdir(self._root)
        except OSError as e:
            raise ProcReadError(self._root, e.strerror or str(e)) from e
        return sorted(int(name) for name in names if name.isdigit())


def parse_cpu_line(line: str) -> CpuTotals:
    """Parse a `cpu`/`cpuN` line; guest columns are ignored."""
    parts = line.split()
    values = parts[1 : 1 + len(CPU_FIELDS)]
    # user nice system idle exist on every kernel, the rest arrived later
    if len(values) < 4:
        raise ProcParseError(f"too few cpu fields: {line!r}")
    try:
        numbers = [int(v) for v in values]
    except ValueError as e:
        raise ProcParseError(f"non-numeric cpu field: {line!r}") from e
    if any(n < 0 for n in numbers):
        raise ProcParseError(f"negative cpu field: {line!r}")
    return CpuTotals(**dict(zip(CPU_FIELDS, numbers)))


def parse_io(content: str, base: IoCounters | None = None) -> IoCounters:
    """Parse `<field>: <value>` lines, keeping `base` values for absent fields."""
    values = {}
    for line in content.splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        name = key.strip()
        if name not in IO_FIELDS:
            continue
        try:
            values[name] = int(value.strip())
        except ValueError:
            continue
    base = base or IoCounters()
    if not values:
        return base
    merged = {name: getattr(base, name) for name in IO_FIELDS}
    merged.update(values)
    return IoCounters(**merged)


def parse_pid_stat(content: str, path: Path | str = "stat") -> tuple[str, list[str]]:
    """Split /proc/<pid>/stat into the comm and the fields after it.

    The comm may itself contain spaces and parentheses, so it runs from the
    first `(` to the last `)`.
    """
    start = content.find("(")
    end = content.rfind(")")
    if start < 0 or end < start:
        raise ProcParseError(f"{path}: malformed stat line")
    return content[start + 1 : end], content[end + 1 :].split()
