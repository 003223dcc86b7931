from __future__ import annotations

from pathlib import Path

import pytest

from bop.core.errors import SysfsReadError, SysfsWriteError
from bop.core.fsroot import FsRoot


def test_read_strips_and_ignores_leading_slash(tmp_path: Path) -> None:
    (tmp_path / "proc").mkdir()
    (tmp_path / "proc" / "cmdline").write_text("quiet splash\n", encoding="utf-8")
    fs = FsRoot(tmp_path)
    assert fs.read("/proc/cmdline") == "quiet splash"
    assert fs.read("proc/cmdline") == "quiet splash"


def test_read_optional_missing_is_none(tmp_path: Path) -> None:
    fs = FsRoot(tmp_path)
    assert fs.read_optional("sys/firmware/acpi/platform_profile") is None
    with pytest.raises(SysfsReadError):
        fs.read("sys/firmware/acpi/platform_profile")


def test_read_raw_keeps_bytes(tmp_path: Path) -> None:
    fs = FsRoot(tmp_path)
    fs.write("etc/default/grub", 'GRUB_CMDLINE_LINUX_DEFAULT="quiet"\r\n', create_parents=True)
    assert fs.read_raw("etc/default/grub") == 'GRUB_CMDLINE_LINUX_DEFAULT="quiet"\r\n'


def test_write_without_parent_fails(tmp_path: Path) -> None:
    fs = FsRoot(tmp_path)
    with pytest.raises(SysfsWriteError) as excinfo:
        fs.write("/sys/nonexistent/control", "auto")
    assert excinfo.value.path == "/sys/nonexistent/control"


def test_list_dir_missing_ok(tmp_path: Path) -> None:
    fs = FsRoot(tmp_path)
    assert fs.list_dir("sys/class/backlight", missing_ok=True) == []
    with pytest.raises(SysfsReadError):
        fs.list_dir("sys/class/backlight")


def test_read_link_name(tmp_path: Path) -> None:
    device = tmp_path / "sys/bus/pci/devices/0000:01:00.0"
    device.mkdir(parents=True)
    (device / "driver").symlink_to("../../../bus/drivers/nvme")
    fs = FsRoot(tmp_path)
    assert fs.read_link_name("sys/bus/pci/devices/0000:01:00.0/driver") == "nvme"
    assert fs.read_link_name("sys/bus/pci/devices/0000:01:00.0/missing") is None
