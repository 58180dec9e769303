"""Tests for process identity resolution."""

import pytest

from procmeter.identity import (
    DesktopEntry,
    DesktopIndex,
    IdentityResolver,
    canonical_name,
    system_locale,
)
from procmeter.models import GENERIC_ICON


class TestCanonicalName:
    """Tests for canonical_name()."""

    def test_plain_executable(self):
        assert canonical_name("/usr/bin/gedit\0notes.txt\0", "gedit") == "gedit"

    def test_interpreter_unwrapped(self):
        assert canonical_name("/usr/bin/python3\0/opt/app/run.py\0--flag\0", "python3") == "run.py"

    def test_space_separated_cmdline(self):
        assert canonical_name("/usr/bin/python3 /opt/app/run.py --flag", "python3") == "run.py"

    def test_interpreter_alone(self):
        """Unwrapping needs a second token."""
        assert canonical_name("/usr/bin/python3\0", "python3") == "python3"

    @pytest.mark.parametrize("interpreter", ["python", "ruby", "php", "perl"])
    def test_other_interpreters(self, interpreter):
        assert canonical_name(f"/usr/bin/{interpreter}\0/srv/tool\0", interpreter) == "tool"

    def test_unknown_interpreter_kept(self):
        assert canonical_name("/usr/bin/node\0server.js\0", "node") == "node"

    def test_empty_cmdline_falls_back(self):
        assert canonical_name("", "kworker/0:1") == "kworker/0:1"

    def test_backslashes_normalised(self):
        assert canonical_name("C:\\wine\\app.exe\0", "app.exe") == "app.exe"

    def test_custom_interpreters(self):
        assert canonical_name("/usr/bin/node\0/srv/app.js\0", "node", interpreters=("node",)) == "app.js"


class TestSystemLocale:
    """Tests for system_locale()."""

    def test_strips_encoding(self, monkeypatch):
        monkeypatch.delenv("LC_ALL", raising=False)
        monkeypatch.delenv("LC_MESSAGES", raising=False)
        monkeypatch.setenv("LANG", "zh_CN.UTF-8")
        assert system_locale() == "zh_CN"

    def test_lc_all_wins(self, monkeypatch):
        monkeypatch.setenv("LC_ALL", "de_DE.UTF-8")
        monkeypatch.setenv("LANG", "zh_CN.UTF-8")
        assert system_locale() == "de_DE"

    def test_c_locale_defaults(self, monkeypatch):
        monkeypatch.setenv("LC_ALL", "C")
        monkeypatch.delenv("LC_MESSAGES", raising=False)
        monkeypatch.delenv("LANG", raising=False)
        assert system_locale() == "en_US"


class TestDesktopIndex:
    """Tests for DesktopIndex."""

    def test_build_walks_subdirectories(self, desktop_dir):
        index = DesktopIndex.build([desktop_dir, desktop_dir / "missing"])
        assert len(index) == 3

    def test_exact_name(self, desktop_dir):
        index = DesktopIndex.build([desktop_dir])
        assert index.find("gedit") == str(desktop_dir / "gedit.desktop")

    def test_suffix_match_case_insensitive(self, desktop_dir):
        index = DesktopIndex.build([desktop_dir])
        assert index.find("terminal") == str(desktop_dir / "org.gnome.Terminal.desktop")

    def test_substring_match_is_second_phase(self, desktop_dir):
        index = DesktopIndex.build([desktop_dir])
        assert index.find("firefox") == str(desktop_dir / "kde" / "firefox-esr.desktop")

    def test_exact_preferred_over_substring(self):
        index = DesktopIndex.from_paths(
            ["/apps/vim-gtk.desktop", "/apps/gvim.desktop", "/apps/vim.desktop"]
        )
        assert index.find("vim") == "/apps/vim.desktop"

    def test_suffix_preferred_over_substring(self):
        index = DesktopIndex.from_paths(["/apps/code-insiders.desktop", "/apps/com.visual.code.desktop"])
        assert index.find("code") == "/apps/com.visual.code.desktop"

    def test_no_match(self, desktop_dir):
        index = DesktopIndex.build([desktop_dir])
        assert index.find("kworker") is None
        assert index.find("") is None


class TestDesktopEntry:
    """Tests for DesktopEntry parsing."""

    def test_localized_name_preferred(self):
        entry = DesktopEntry.parse("[Desktop Entry]\nName=Foo\nName[en]=Bar\n")
        assert entry.display_name("en") == "Bar"

    def test_localized_name_before_plain_name_in_file(self):
        entry = DesktopEntry.parse("[Desktop Entry]\nName[en]=Bar\nName=Foo\n")
        assert entry.display_name("en") == "Bar"

    def test_generic_name_second(self):
        entry = DesktopEntry.parse("Name=Foo\nGenericName[de]=Dings\n")
        assert entry.display_name("de") == "Dings"

    def test_name_beats_generic_name(self):
        entry = DesktopEntry.parse("GenericName[de]=Dings\nName[de]=Foo DE\n")
        assert entry.display_name("de") == "Foo DE"

    def test_plain_name_fallback(self):
        entry = DesktopEntry.parse("[Desktop Entry]\nName=Foo\nName[fr]=Truc\n")
        assert entry.display_name("en") == "Foo"

    def test_language_only_key(self):
        entry = DesktopEntry.parse("Name=Foo\nName[de]=Dings\n")
        assert entry.display_name("de_AT") == "Dings"

    def test_action_groups_ignored(self):
        entry = DesktopEntry.parse(
            "[Desktop Entry]\nName=Browser\nIcon=browser\n"
            "[Desktop Action new-window]\nName=New Window\nIcon=other\n"
        )
        assert entry.display_name("en") == "Browser"
        assert entry.icon == "browser"

    def test_comments_and_blank_lines(self):
        entry = DesktopEntry.parse("# comment\n\n[Desktop Entry]\nName=Foo\n")
        assert entry.display_name("en") == "Foo"

    def test_missing_icon_path(self):
        entry = DesktopEntry.parse("Icon=/nonexistent/icon.png\n")
        assert entry.icon is None

    def test_existing_icon_path(self, tmp_path):
        icon = tmp_path / "icon.png"
        icon.write_bytes(b"\x89PNG")
        entry = DesktopEntry.parse(f"Icon={icon}\n")
        assert entry.icon == str(icon)

    def test_load_unreadable(self, tmp_path):
        bad = tmp_path / "bad.desktop"
        bad.write_bytes(b"Name=\xff\xfe\n")
        assert DesktopEntry.load(bad) is None
        assert DesktopEntry.load(tmp_path / "missing.desktop") is None


class TestIdentityResolver:
    """Tests for IdentityResolver."""

    def test_resolves_descriptor(self, desktop_dir):
        resolver = IdentityResolver(DesktopIndex.build([desktop_dir]), locale="zh_CN")
        identity = resolver.resolve("gedit")
        assert identity.canonical_name == "gedit"
        assert identity.display_name == "文本编辑器"
        assert identity.icon == "accessories-text-editor"
        assert identity.descriptor_path == str(desktop_dir / "gedit.desktop")

    def test_unlocalized_name(self, desktop_dir):
        resolver = IdentityResolver(DesktopIndex.build([desktop_dir]), locale="fr_FR")
        assert resolver.resolve("gedit").display_name == "Text Editor"

    def test_miss_falls_back(self, desktop_dir):
        resolver = IdentityResolver(DesktopIndex.build([desktop_dir]), locale="en_US")
        identity = resolver.resolve("kworker")
        assert identity.display_name == "kworker"
        assert identity.icon == GENERIC_ICON
        assert identity.descriptor_path is None

    def test_denylist_skips_search(self, desktop_dir):
        resolver = IdentityResolver(
            DesktopIndex.build([desktop_dir]), locale="en_US", denylist=["Terminal"]
        )
        identity = resolver.resolve("terminal")
        assert identity.descriptor_path is None
        assert identity.icon == GENERIC_ICON

    def test_display_override(self):
        resolver = IdentityResolver(DesktopIndex(), locale="en_US")
        assert resolver.resolve("deepin-wm").display_name == "深度窗口管理器"

    def test_custom_override(self, desktop_dir):
        resolver = IdentityResolver(
            DesktopIndex.build([desktop_dir]),
            locale="en_US",
            display_overrides={"gedit": "Editor"},
        )
        identity = resolver.resolve("gedit")
        assert identity.display_name == "Editor"
        assert identity.icon == "accessories-text-editor"

    def test_lookups_counted(self):
        resolver = IdentityResolver(DesktopIndex(), locale="en_US")
        resolver.resolve("a")
        resolver.resolve("a")
        assert resolver.lookups == 2

    def test_canonical_name_uses_interpreters(self):
        resolver = IdentityResolver(DesktopIndex(), locale="en_US", interpreters=["bash"])
        assert resolver.canonical_name("/bin/bash\0/usr/local/bin/backup.sh\0", "bash") == "backup.sh"
        assert resolver.canonical_name("/usr/bin/python3\0x.py\0", "python3") == "python3"
