"""Side-effect interfaces consumed by the apply and revert engines."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from bop.core.hardware import HardwareView
from bop.core.model import ApplyJournal, ApplyPlan, KernelParamBackup, ModprobeConfig


class ApplyOps(Protocol):
    def write_sysfs(self, path: str, value: str) -> None:
        """Write ``value`` to an absolute sysfs/procfs path."""

    def toggle_acpi_wakeup(self, device: str) -> None:
        """Flip the wakeup state of ``device``."""

    def add_kernel_params(self, params: Sequence[str]) -> list[KernelParamBackup]:
        """Persist kernel parameters; returns byte-exact backups of rewritten files."""

    def disable_service(self, name: str) -> None: ...

    def generate_unit(self, view: HardwareView, plan: ApplyPlan) -> str:
        """Write the persistence unit and return its path."""

    def enable_unit(self) -> None: ...

    def write_modprobe_config(self, config: ModprobeConfig) -> str:
        """Write a modprobe.d file and return its path."""

    def save_state(self, journal: ApplyJournal) -> None: ...


class RevertOps(Protocol):
    def write_sysfs(self, path: str, value: str) -> None: ...

    def toggle_acpi_wakeup(self, device: str) -> None: ...

    def restore_kernel_param_backups(self, backups: Sequence[KernelParamBackup]) -> None:
        """Restore every backup; raises BootloaderError listing the failed ones."""

    def remove_kernel_params(self, params: Sequence[str]) -> None:
        """Fallback for journals written before backups were recorded."""

    def enable_service(self, name: str) -> None: ...

    def remove_unit(self, path: str) -> None: ...

    def remove_modprobe_config(self, path: str) -> None: ...

    def restore_brightness(self, value: int) -> None: ...

    def save_state(self, journal: ApplyJournal) -> None: ...

    def clear_state(self) -> None: ...
