"""Process identity resolution: canonical names, descriptor files, display names."""

import os
from collections.abc import Iterable
from pathlib import Path

import structlog

from procmeter.models import GENERIC_ICON, ProcessIdentity

log = structlog.get_logger()

DEFAULT_INTERPRETERS = ("python", "python3", "ruby", "php", "perl")

DEFAULT_DESKTOP_DIRS = (
    "/usr/share/applications",
    "~/.local/share/applications",
)

DEFAULT_DISPLAY_OVERRIDES = {"deepin-wm": "深度窗口管理器"}

DESKTOP_SUFFIX = ".desktop"
DESKTOP_ENTRY_GROUP = "Desktop Entry"


def canonical_name(
    cmdline: str,
    fallback: str,
    interpreters: Iterable[str] = DEFAULT_INTERPRETERS,
) -> str:
    """
    Derive the executable name of a process from its command line.

    Scripts run through a known interpreter are named after the script rather
    than the interpreter. An empty command line (kernel threads, zombies) falls
    back to the kernel short name, which may be truncated to 16 characters.

    Args:
        cmdline: Raw /proc/<pid>/cmdline content, NUL separated.
        fallback: Kernel-reported name used when the command line is empty.
        interpreters: Executable names to unwrap.

    Returns:
        The canonical name.
    """
    tokens = cmdline.replace("\0", " ").replace("\\", "/").split()
    if not tokens:
        return fallback
    name = os.path.basename(tokens[0]) or tokens[0]
    if name in interpreters and len(tokens) > 1:
        return os.path.basename(tokens[1]) or tokens[1]
    return name


def system_locale() -> str:
    """Locale name as used in descriptor keys, e.g. `zh_CN`."""
    for var in ("LC_ALL", "LC_MESSAGES", "LANG"):
        value = os.environ.get(var, "")
        if value:
            name = value.split(".", 1)[0].split("@", 1)[0]
            if name and name not in ("C", "POSIX"):
                return name
    return "en_US"


class DesktopIndex:
    """
    In-memory index of application descriptor files.

    Built once from a set of directories so that resolving a name never walks
    the filesystem again. Lookups are two-phase: names of the form
    `<name>.desktop` first (an exact file name wins), then any file name
    containing `<name>`.
    """

    def __init__(self, paths: Iterable[str | Path] = ()) -> None:
        self._entries = sorted(
            ((Path(p).name.lower(), str(p)) for p in paths),
            key=lambda entry: entry[1],
        )

    @classmethod
    def build(cls, directories: Iterable[str | Path] = DEFAULT_DESKTOP_DIRS) -> "DesktopIndex":
        """Walk `directories` recursively and index every *.desktop file."""
        found: list[str] = []
        for directory in directories:
            root = Path(directory).expanduser()
            if not root.is_dir():
                continue
            for dirpath, _dirnames, filenames in os.walk(root):
                for filename in filenames:
                    if filename.endswith(DESKTOP_SUFFIX):
                        found.append(os.path.join(dirpath, filename))
        log.debug("desktop_index_built", files=len(found))
        return cls(found)

    @classmethod
    def from_paths(cls, paths: Iterable[str | Path]) -> "DesktopIndex":
        return cls(paths)

    def __len__(self) -> int:
        return len(self._entries)

    def find(self, name: str) -> str | None:
        """Return the descriptor path best matching `name`, or None."""
        needle = name.lower()
        if not needle:
            return None
        exact = needle + DESKTOP_SUFFIX
        suffixed = [(base, path) for base, path in self._entries if exact in base]
        for base, path in suffixed:
            if base == exact:
                return path
        if suffixed:
            return suffixed[0][1]
        for base, path in self._entries:
            if needle in base:
                return path
        return None


class DesktopEntry:
    """Key/value pairs of the main group of a descriptor file."""

    def __init__(self, values: dict[str, str], path: str | None = None) -> None:
        self.values = values
        self.path = path

    @classmethod
    def parse(cls, content: str, path: str | None = None) -> "DesktopEntry":
        values: dict[str, str] = {}
        group: str | None = None
        for raw in content.splitlines():
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("[") and line.endswith("]"):
                group = line[1:-1]
                continue
            # Actions and other groups carry their own Name keys
            if group is not None and group != DESKTOP_ENTRY_GROUP:
                continue
            key, sep, value = line.partition("=")
            if not sep:
                continue
            values.setdefault(key.strip(), value.strip())
        return cls(values, path)

    @classmethod
    def load(cls, path: str | Path) -> "DesktopEntry | None":
        try:
            content = Path(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            log.debug("descriptor_unreadable", path=str(path), error=str(e))
            return None
        return cls.parse(content, str(path))

    def localized(self, key: str, locale: str) -> str | None:
        candidates = [f"{key}[{locale}]"]
        language = locale.split("_", 1)[0]
        if language != locale:
            candidates.append(f"{key}[{language}]")
        for candidate in candidates:
            value = self.values.get(candidate)
            if value:
                return value
        return None

    def display_name(self, locale: str) -> str | None:
        """Name[<locale>], then GenericName[<locale>], then the plain Name."""
        return (
            self.localized("Name", locale)
            or self.localized("GenericName", locale)
            or self.values.get("Name")
            or None
        )

    @property
    def icon(self) -> str | None:
        value = self.values.get("Icon")
        if not value:
            return None
        if "/" in value and not Path(value).exists():
            return None
        return value


class IdentityResolver:
    """
    Resolves a canonical process name into a display name and an icon.

    Resolution is a pure function of the canonical name, so results can be
    cached by name and shared between processes.
    """

    def __init__(
        self,
        index: DesktopIndex | None = None,
        locale: str | None = None,
        denylist: Iterable[str] = (),
        display_overrides: dict[str, str] | None = None,
        interpreters: Iterable[str] = DEFAULT_INTERPRETERS,
    ) -> None:
        self._index = index if index is not None else DesktopIndex()
        self._locale = locale or system_locale()
        self._denylist = frozenset(name.lower() for name in denylist)
        overrides = DEFAULT_DISPLAY_OVERRIDES if display_overrides is None else display_overrides
        self._overrides = {name.lower(): label for name, label in overrides.items()}
        self._interpreters = frozenset(interpreters)
        self.lookups = 0

    @property
    def locale(self) -> str:
        return self._locale

    def canonical_name(self, cmdline: str, fallback: str) -> str:
        return canonical_name(cmdline, fallback, self._interpreters)

    def resolve(self, name: str) -> ProcessIdentity:
        """Build the identity for a canonical name."""
        self.lookups += 1
        override = self._overrides.get(name.lower())
        if name.lower() in self._denylist:
            return ProcessIdentity(canonical_name=name, display_name=override or name)

        descriptor = self._index.find(name)
        entry = DesktopEntry.load(descriptor) if descriptor else None
        if entry is None:
            return ProcessIdentity(canonical_name=name, display_name=override or name)

        return ProcessIdentity(
            canonical_name=name,
            display_name=override or entry.display_name(self._locale) or name,
            descriptor_path=descriptor,
            icon=entry.icon or GENERIC_ICON,
        )
