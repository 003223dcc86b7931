"""Real side-effect back-end: sysfs, bootloader, systemd and the journal store."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import PurePosixPath

from bop.core import brightness, wake
from bop.core.bootloader import BootloaderEditor
from bop.core.commands import Systemctl
from bop.core.config import Settings
from bop.core.fsroot import FsRoot
from bop.core.hardware import HardwareView
from bop.core.journal import JournalStore
from bop.core.model import ApplyJournal, ApplyPlan, KernelParamBackup, ModprobeConfig
from bop.core.units import render_unit

LOGGER = logging.getLogger(__name__)


class SystemOps:
    """Implements both ``ApplyOps`` and ``RevertOps`` against the live machine."""

    def __init__(
        self,
        fs: FsRoot,
        settings: Settings,
        *,
        store: JournalStore | None = None,
        systemctl: Systemctl | None = None,
        bootloader: BootloaderEditor | None = None,
    ) -> None:
        self.fs = fs
        self.settings = settings
        self.store = store or JournalStore(settings.state_file)
        self.systemctl = systemctl or Systemctl()
        self.bootloader = bootloader or BootloaderEditor(fs)

    def write_sysfs(self, path: str, value: str) -> None:
        self.fs.write(path, value)

    def toggle_acpi_wakeup(self, device: str) -> None:
        wake.toggle_wakeup(self.fs, device)

    def add_kernel_params(self, params: Sequence[str]) -> list[KernelParamBackup]:
        return self.bootloader.add_kernel_params(params)

    def restore_kernel_param_backups(self, backups: Sequence[KernelParamBackup]) -> None:
        self.bootloader.restore_backups(backups)

    def remove_kernel_params(self, params: Sequence[str]) -> None:
        self.bootloader.remove_kernel_params(params)

    def disable_service(self, name: str) -> None:
        self.systemctl.disable(name)

    def enable_service(self, name: str) -> None:
        self.systemctl.enable(name)

    def generate_unit(self, view: HardwareView, plan: ApplyPlan) -> str:
        path = self.settings.unit_path
        self.fs.write(path, render_unit(view, plan), create_parents=True)
        LOGGER.info("generated %s", path)
        return path

    def enable_unit(self) -> None:
        self.systemctl.enable_now(self.settings.unit_name)

    def remove_unit(self, path: str) -> None:
        name = PurePosixPath(path).name
        if self.fs.exists(path):
            self.systemctl.disable_now(name)
        self.fs.remove(path)
        self.systemctl.daemon_reload()

    def write_modprobe_config(self, config: ModprobeConfig) -> str:
        path = f"{self.settings.modprobe_dir}/{config.filename}"
        self.fs.write(path, config.content, create_parents=True)
        return path

    def remove_modprobe_config(self, path: str) -> None:
        self.fs.remove(path)

    def restore_brightness(self, value: int) -> None:
        brightness.restore(value, self.fs)

    def save_state(self, journal: ApplyJournal) -> None:
        self.store.save(journal)

    def clear_state(self) -> None:
        self.store.clear()
