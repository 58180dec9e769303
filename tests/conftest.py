"""Shared test fixtures for procmeter."""

from pathlib import Path
from types import SimpleNamespace

import pytest

from procmeter.models import ProcessSample

PAGE_SIZE = 4096


class FakeProc:
    """A minimal /proc tree on disk."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        self.set_cpu()

    def set_cpu(self, user: int = 0, nice: int = 0, system: int = 0, idle: int = 0, cores=None) -> None:
        """Write /proc/stat; `cores` is a list of (user, idle) pairs."""
        lines = [f"cpu  {user} {nice} {system} {idle} 0 0 0 0 0 0"]
        for index, (core_user, core_idle) in enumerate(cores or []):
            lines.append(f"cpu{index} {core_user} 0 0 {core_idle} 0 0 0 0 0 0")
        lines.append("intr 12345 0 0")
        lines.append("ctxt 98765")
        (self.root / "stat").write_text("\n".join(lines) + "\n")

    def write_stat(self, content: str) -> None:
        (self.root / "stat").write_text(content)

    def add_process(
        self,
        pid: int,
        cmdline: list[str] | None = None,
        comm: str = "proc",
        utime: int = 0,
        stime: int = 0,
        start_time: int = 100,
        io: dict[str, int] | None = None,
    ) -> None:
        pid_dir = self.root / str(pid)
        pid_dir.mkdir(exist_ok=True)
        args = cmdline or []
        (pid_dir / "cmdline").write_bytes(b"".join(a.encode() + b"\0" for a in args))
        self.update_process(pid, utime, stime, start_time=start_time, comm=comm)
        if io is not None:
            self.set_io(pid, **io)

    def update_process(
        self, pid: int, utime: int, stime: int, start_time: int = 100, comm: str = "proc"
    ) -> None:
        (self.root / str(pid) / "stat").write_text(
            f"{pid} ({comm}) S 1 1 1 0 -1 4194560 100 0 0 0 {utime} {stime} 0 0 20 0 1 0 "
            f"{start_time} 1000000 10 18446744073709551615\n"
        )

    def set_io(self, pid: int, **fields: int) -> None:
        content = "".join(f"{name}: {value}\n" for name, value in fields.items())
        (self.root / str(pid) / "io").write_text(content)

    def remove_process(self, pid: int) -> None:
        pid_dir = self.root / str(pid)
        for child in pid_dir.iterdir():
            child.unlink()
        pid_dir.rmdir()


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeNetwork:
    """Stand-in for psutil.net_io_counters(pernic=True)."""

    def __init__(self) -> None:
        self.counters: dict[str, tuple[int, int]] = {}

    def set(self, name: str, recv: int, sent: int) -> None:
        self.counters[name] = (recv, sent)

    def __call__(self, pernic: bool = True) -> dict:
        return {
            name: SimpleNamespace(bytes_recv=recv, bytes_sent=sent)
            for name, (recv, sent) in self.counters.items()
        }


def fake_memory(total: int = 8 * 1024**3, used: int = 2 * 1024**3):
    """Stand-in for psutil.virtual_memory / swap_memory."""
    return lambda: SimpleNamespace(total=total, used=used, percent=used / total * 100)


def make_sample(
    pid: int = 100,
    utime: int = 0,
    stime: int = 0,
    cmdline: str = "",
    sampled_at: float = 0.0,
) -> ProcessSample:
    """Create a ProcessSample for testing."""
    return ProcessSample(pid=pid, utime=utime, stime=stime, cmdline=cmdline, sampled_at=sampled_at)


@pytest.fixture
def fake_proc(tmp_path: Path) -> FakeProc:
    return FakeProc(tmp_path / "proc")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def desktop_dir(tmp_path: Path) -> Path:
    """Directory of descriptor files."""
    apps = tmp_path / "applications"
    (apps / "kde").mkdir(parents=True)
    (apps / "gedit.desktop").write_text(
        "[Desktop Entry]\n"
        "Name=Text Editor\n"
        "Name[zh_CN]=文本编辑器\n"
        "GenericName[de]=Texteditor\n"
        "Icon=accessories-text-editor\n",
        encoding="utf-8",
    )
    (apps / "org.gnome.Terminal.desktop").write_text(
        "[Desktop Entry]\nName=Terminal\nIcon=utilities-terminal\n"
    )
    (apps / "kde" / "firefox-esr.desktop").write_text(
        "[Desktop Entry]\nName=Firefox ESR\nIcon=firefox-esr\n"
    )
    return apps
