"""Configuration system for procmeter."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from queue import Queue

import tomlkit

from procmeter.cache import IdentityCache
from procmeter.identity import (
    DEFAULT_DESKTOP_DIRS,
    DEFAULT_DISPLAY_OVERRIDES,
    DEFAULT_INTERPRETERS,
    DesktopIndex,
    IdentityResolver,
)
from procmeter.models import ProcessFilter
from procmeter.monitor import SystemMonitor
from procmeter.procfs import ProcReader

LOG_LEVELS = ("debug", "info", "warning", "error")


@dataclass
class SamplingConfig:
    """Tick scheduling and process list configuration."""

    interval: float = 2.0  # Seconds between ticks
    workers: int = 0  # Threads reading pids in parallel, 0 reads inline
    proc_root: str = "/proc"
    top: int = 0  # Published processes per record, 0 keeps all
    filter: str = "all"  # all / mine / gui


@dataclass
class IdentityConfig:
    """Process name and descriptor resolution configuration."""

    desktop_dirs: list[str] = field(default_factory=lambda: list(DEFAULT_DESKTOP_DIRS))
    locale: str = ""  # Empty uses LC_ALL / LC_MESSAGES / LANG
    interpreters: list[str] = field(default_factory=lambda: list(DEFAULT_INTERPRETERS))
    # Background helpers whose names collide with unrelated desktop entries
    denylist: list[str] = field(
        default_factory=lambda: ["sh", "bash", "dbus-daemon", "dbus-launch", "ssh-agent", "sudo"]
    )
    cache_size: int = 0  # 0 keeps every resolved name
    display_overrides: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_DISPLAY_OVERRIDES)
    )


@dataclass
class LoggingConfig:
    """Log output configuration."""

    level: str = "info"
    file: str = ""  # JSON log file, empty for console only
    max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    backup_count: int = 3  # Number of backup log files to keep


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


def _load_section(cls: type, data: dict, section: str) -> object:
    """Build a section dataclass from TOML data, using its defaults for missing keys."""
    if not isinstance(data, dict):
        raise ValueError(f"[{section}] must be a table, got {data!r}")
    defaults = cls()
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown keys in [{section}]: {sorted(unknown)}")
    values = {}
    for f in fields(cls):
        default = getattr(defaults, f.name)
        value = data.get(f.name, default)
        # ints are accepted where floats are expected
        if isinstance(default, float) and isinstance(value, int) and not isinstance(value, bool):
            value = float(value)
        elif isinstance(value, bool) or not isinstance(value, type(default)):
            raise ValueError(
                f"[{section}] {f.name} must be {type(default).__name__}, got {value!r}"
            )
        values[f.name] = value
    return cls(**values)


@dataclass
class Config:
    """Main configuration container."""

    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    identity: IdentityConfig = field(default_factory=IdentityConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def __post_init__(self) -> None:
        self.validate()

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "procmeter"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def process_filter(self) -> ProcessFilter:
        return ProcessFilter(self.sampling.filter)

    def validate(self) -> None:
        """Raise ValueError for values the monitor cannot run with."""
        if self.sampling.interval <= 0:
            raise ValueError(f"sampling.interval must be positive, got {self.sampling.interval}")
        if self.sampling.workers < 0:
            raise ValueError(f"sampling.workers must be >= 0, got {self.sampling.workers}")
        if self.sampling.top < 0:
            raise ValueError(f"sampling.top must be >= 0, got {self.sampling.top}")
        valid_filters = [f.value for f in ProcessFilter]
        if self.sampling.filter not in valid_filters:
            raise ValueError(
                f"Unknown filter: {self.sampling.filter!r}. Valid filters: {valid_filters}"
            )
        if self.identity.cache_size < 0:
            raise ValueError(f"identity.cache_size must be >= 0, got {self.identity.cache_size}")
        if self.logging.level not in LOG_LEVELS:
            raise ValueError(
                f"Unknown log level: {self.logging.level!r}. Valid levels: {list(LOG_LEVELS)}"
            )

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ("sampling", "identity", "logging"):
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    def dumps(self) -> str:
        doc = tomlkit.document()
        for name in ("sampling", "identity", "logging"):
            doc.add(name, _dataclass_to_table(getattr(self, name)))
        return tomlkit.dumps(doc)

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions - no hardcoded values here.
        This ensures Config() and Config.load() use identical defaults.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f).unwrap()
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        return cls(
            sampling=_load_section(SamplingConfig, data.get("sampling", {}), "sampling"),
            identity=_load_section(IdentityConfig, data.get("identity", {}), "identity"),
            logging=_load_section(LoggingConfig, data.get("logging", {}), "logging"),
        )


def build_monitor(config: Config, update_queue: Queue | None = None) -> SystemMonitor:
    """Wire a SystemMonitor and its collaborators from configuration."""
    ident = config.identity
    resolver = IdentityResolver(
        index=DesktopIndex.build(ident.desktop_dirs),
        locale=ident.locale or None,
        denylist=ident.denylist,
        display_overrides=ident.display_overrides,
        interpreters=ident.interpreters,
    )
    return SystemMonitor(
        update_queue,
        poll_rate=config.sampling.interval,
        reader=ProcReader(config.sampling.proc_root),
        cache=IdentityCache(resolver, maxsize=ident.cache_size or None),
        process_filter=config.process_filter,
        top=config.sampling.top,
        workers=config.sampling.workers,
    )
