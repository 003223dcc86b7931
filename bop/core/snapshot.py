"""Capture the sysfs/procfs surface bop reads, and rebuild it as a fixture tree."""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path

from bop.core.errors import BopError
from bop.core.fsroot import FsRoot
from bop.core.hardware import (
    BACKLIGHT_BASE,
    CPU_BASE,
    DRM_BASE,
    NET_BASE,
    PCI_BASE,
    POWER_SUPPLY_BASE,
    USB_BASE,
)
from bop.core.journal import now_rfc3339

FORMAT_VERSION = "1"
DRIVER_MARKER = "__driver_name"

SINGLE_FILE_PATHS = (
    "sys/class/dmi/id/board_vendor",
    "sys/class/dmi/id/board_name",
    "sys/class/dmi/id/product_name",
    "sys/class/dmi/id/product_family",
    "sys/class/dmi/id/bios_version",
    f"{CPU_BASE}/cpufreq/boost",
    f"{CPU_BASE}/amd_pstate/status",
    "sys/firmware/acpi/platform_profile",
    "sys/firmware/acpi/platform_profile_choices",
    "sys/power/state",
    "sys/power/mem_sleep",
    "sys/module/pcie_aspm/parameters/policy",
    "sys/module/snd_hda_intel/parameters/power_save",
    "sys/module/snd_hda_intel/parameters/power_save_controller",
    "sys/module/amdgpu/parameters/abmlevel",
    "proc/sys/kernel/nmi_watchdog",
    "proc/sys/vm/dirty_writeback_centisecs",
    "proc/cpuinfo",
    "proc/cmdline",
    "proc/acpi/wakeup",
)

CPUFREQ_FILES = (
    "scaling_driver",
    "scaling_governor",
    "energy_performance_preference",
    "energy_performance_available_preferences",
)
PCI_FILES = ("class", "vendor", "device", "power/control", "power/runtime_status")
USB_FILES = ("power/control", "product", "manufacturer", "idVendor", "idProduct")
GPU_FILES = ("vendor", "power_state", "power_dpm_force_performance_level")
POWER_SUPPLY_FILES = (
    "type",
    "online",
    "present",
    "status",
    "capacity",
    "energy_now",
    "energy_full",
    "energy_full_design",
    "power_now",
    "charge_now",
    "charge_full",
    "charge_full_design",
    "current_now",
    "voltage_now",
    "cycle_count",
)


@dataclass
class Snapshot:
    version: str
    timestamp: str
    files: dict[str, str] = field(default_factory=dict)
    dirs: list[str] = field(default_factory=list)

    def save(self, path: str | os.PathLike[str]) -> None:
        try:
            Path(path).write_text(json.dumps(asdict(self), indent=2, sort_keys=True) + "\n", encoding="utf-8")
        except OSError as exc:
            raise BopError(f"failed to write snapshot {path}: {exc}", path=str(path)) from exc

    @classmethod
    def load(cls, path: str | os.PathLike[str]) -> Snapshot:
        try:
            doc = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise BopError(f"failed to read snapshot {path}: {exc}", path=str(path)) from exc
        return cls(
            version=str(doc.get("version", FORMAT_VERSION)),
            timestamp=str(doc.get("timestamp", "")),
            files=dict(doc.get("files", {})),
            dirs=list(doc.get("dirs", [])),
        )

    def materialize(self, root: str | os.PathLike[str]) -> FsRoot:
        """Recreate the snapshot under ``root``; driver names become symlinks."""
        root_path = Path(root)
        for rel in self.dirs:
            (root_path / rel).mkdir(parents=True, exist_ok=True)
        for rel, content in sorted(self.files.items()):
            target = root_path / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            if target.name == DRIVER_MARKER:
                link = target.with_name("driver")
                if not link.is_symlink():
                    os.symlink(f"../../../bus/drivers/{content}", link)
                continue
            target.write_text(f"{content}\n", encoding="utf-8")
        return FsRoot(root_path)


class _Collector:
    def __init__(self, fs: FsRoot) -> None:
        self.fs = fs
        self.files: dict[str, str] = {}
        self.dirs: list[str] = []

    def file(self, rel: str) -> None:
        value = self.fs.read_optional(rel)
        if value is not None:
            self.files[rel] = value

    def files_under(self, base: str, names: tuple[str, ...]) -> None:
        for name in names:
            self.file(f"{base}/{name}")

    def driver(self, base: str) -> None:
        name = self.fs.read_link_name(f"{base}/driver")
        if name is not None:
            self.files[f"{base}/{DRIVER_MARKER}"] = name

    def directory(self, rel: str) -> None:
        if rel not in self.dirs:
            self.dirs.append(rel)


def capture(fs: FsRoot) -> Snapshot:
    col = _Collector(fs)
    for rel in SINGLE_FILE_PATHS:
        col.file(rel)

    for name in fs.list_dir(CPU_BASE, missing_ok=True):
        if name.startswith("cpu") and name[3:].isdigit():
            col.files_under(f"{CPU_BASE}/{name}/cpufreq", CPUFREQ_FILES)

    for address in fs.list_dir(PCI_BASE, missing_ok=True):
        base = f"{PCI_BASE}/{address}"
        col.directory(f"{base}/power")
        col.files_under(base, PCI_FILES)
        col.driver(base)

    for name in fs.list_dir(USB_BASE, missing_ok=True):
        if ":" in name:
            continue
        base = f"{USB_BASE}/{name}"
        col.directory(f"{base}/power")
        col.files_under(base, USB_FILES)

    for name in fs.list_dir(DRM_BASE, missing_ok=True):
        if not name.startswith("card"):
            continue
        if "-" in name:
            col.file(f"{DRM_BASE}/{name}/status")
            continue
        device = f"{DRM_BASE}/{name}/device"
        if fs.exists(device):
            col.directory(device)
            col.files_under(device, GPU_FILES)
            col.driver(device)

    for name in fs.list_dir(BACKLIGHT_BASE, missing_ok=True):
        col.files_under(f"{BACKLIGHT_BASE}/{name}", ("brightness", "max_brightness"))

    for iface in fs.list_dir(NET_BASE, missing_ok=True):
        base = f"{NET_BASE}/{iface}"
        if fs.exists(f"{base}/wireless"):
            col.directory(f"{base}/wireless")
            col.directory(f"{base}/device")
            col.driver(f"{base}/device")

    for name in fs.list_dir(POWER_SUPPLY_BASE, missing_ok=True):
        col.files_under(f"{POWER_SUPPLY_BASE}/{name}", POWER_SUPPLY_FILES)

    return Snapshot(version=FORMAT_VERSION, timestamp=now_rfc3339(), files=col.files, dirs=col.dirs)
