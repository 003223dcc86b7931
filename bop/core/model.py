"""Core data models shared by audit, planning, apply, revert and status."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum


class Severity(IntEnum):
    INFO = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3

    @property
    def label(self) -> str:
        return self.name.capitalize()


@dataclass(frozen=True)
class Finding:
    severity: Severity
    category: str
    description: str
    current: str = ""
    recommended: str = ""
    impact: str = ""
    path: str | None = None
    weight: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.weight <= 10:
            raise ValueError(f"finding weight must be within 0..10, got {self.weight}")


@dataclass(frozen=True)
class PlannedWrite:
    path: str
    value: str
    description: str


@dataclass(frozen=True)
class ModprobeConfig:
    filename: str
    content: str


@dataclass(frozen=True)
class ApplyPlan:
    sysfs_writes: tuple[PlannedWrite, ...] = ()
    kernel_params: tuple[str, ...] = ()
    services_to_disable: tuple[str, ...] = ()
    acpi_wakeup_disable: tuple[str, ...] = ()
    systemd_service: bool = False
    modprobe_configs: tuple[ModprobeConfig, ...] = ()

    def is_empty(self) -> bool:
        return not (
            self.sysfs_writes
            or self.kernel_params
            or self.services_to_disable
            or self.acpi_wakeup_disable
            or self.modprobe_configs
        )


@dataclass(frozen=True)
class SysfsChange:
    path: str
    original_value: str
    new_value: str


@dataclass(frozen=True)
class KernelParamBackup:
    path: str
    original_content: str


@dataclass
class ApplyJournal:
    """Persisted record of every mutation bop made; the ground truth for revert."""

    timestamp: str
    sysfs_changes: list[SysfsChange] = field(default_factory=list)
    kernel_params_added: list[str] = field(default_factory=list)
    kernel_param_backups: list[KernelParamBackup] = field(default_factory=list)
    services_disabled: list[str] = field(default_factory=list)
    systemd_units_created: list[str] = field(default_factory=list)
    modprobe_files_created: list[str] = field(default_factory=list)
    acpi_wakeup_toggled: list[str] = field(default_factory=list)
    brightness_original: int | None = None

    def is_empty(self) -> bool:
        return not (
            self.sysfs_changes
            or self.kernel_params_added
            or self.kernel_param_backups
            or self.services_disabled
            or self.systemd_units_created
            or self.modprobe_files_created
            or self.acpi_wakeup_toggled
            or self.brightness_original is not None
        )
