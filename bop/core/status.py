"""Drift check: is every journal entry still in force on the live system?"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from bop.core.commands import Systemctl
from bop.core.fsroot import FsRoot
from bop.core.hardware import ACPI_WAKEUP
from bop.core.model import ApplyJournal


@dataclass(frozen=True)
class SysfsStatus:
    path: str
    expected: str
    actual: str | None
    active: bool


@dataclass(frozen=True)
class WakeupStatus:
    device: str
    active: bool


@dataclass(frozen=True)
class KernelParamStatus:
    param: str
    in_cmdline: bool

    @property
    def active(self) -> bool:
        return self.in_cmdline


@dataclass(frozen=True)
class ServiceStatus:
    name: str
    still_stopped: bool

    @property
    def active(self) -> bool:
        return self.still_stopped


@dataclass(frozen=True)
class FileStatus:
    """A file bop created (persistence unit or modprobe config)."""

    path: str
    exists: bool

    @property
    def active(self) -> bool:
        return self.exists


@dataclass(frozen=True)
class StatusReport:
    timestamp: str
    sysfs: tuple[SysfsStatus, ...] = ()
    acpi_wakeup: tuple[WakeupStatus, ...] = ()
    kernel_params: tuple[KernelParamStatus, ...] = ()
    services: tuple[ServiceStatus, ...] = ()
    units: tuple[FileStatus, ...] = ()
    modprobe: tuple[FileStatus, ...] = ()

    def _entries(self) -> list[Any]:
        return [
            *self.sysfs,
            *self.acpi_wakeup,
            *self.kernel_params,
            *self.services,
            *self.units,
            *self.modprobe,
        ]

    @property
    def total(self) -> int:
        return len(self._entries())

    @property
    def active(self) -> int:
        return sum(1 for entry in self._entries() if entry.active)

    @property
    def drifted(self) -> int:
        return self.total - self.active

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.update(total=self.total, active=self.active, drifted=self.drifted)
        return data


def wakeup_disabled(acpi_wakeup: str, device: str) -> bool:
    for line in acpi_wakeup.splitlines():
        parts = line.split()
        if parts and parts[0] == device:
            return "*disabled" in parts
    return False


class StatusChecker:
    def __init__(self, fs: FsRoot, *, systemctl: Systemctl | None = None) -> None:
        self.fs = fs
        self.systemctl = systemctl or Systemctl()

    def check(self, journal: ApplyJournal) -> StatusReport:
        acpi_wakeup = self.fs.read_optional(ACPI_WAKEUP) or ""
        cmdline = (self.fs.read_optional("proc/cmdline") or "").split()

        sysfs = []
        for change in journal.sysfs_changes:
            actual = self.fs.read_optional(change.path)
            expected = change.new_value.strip()
            sysfs.append(SysfsStatus(path=change.path, expected=expected, actual=actual, active=actual == expected))

        return StatusReport(
            timestamp=journal.timestamp,
            sysfs=tuple(sysfs),
            acpi_wakeup=tuple(
                WakeupStatus(device=device, active=wakeup_disabled(acpi_wakeup, device))
                for device in journal.acpi_wakeup_toggled
            ),
            kernel_params=tuple(
                KernelParamStatus(param=param, in_cmdline=param in cmdline) for param in journal.kernel_params_added
            ),
            services=tuple(
                ServiceStatus(name=name, still_stopped=not self.systemctl.is_active_or_enabled(name))
                for name in journal.services_disabled
            ),
            units=tuple(FileStatus(path=p, exists=self.fs.exists(p)) for p in journal.systemd_units_created),
            modprobe=tuple(FileStatus(path=p, exists=self.fs.exists(p)) for p in journal.modprobe_files_created),
        )
