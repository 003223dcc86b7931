"""Execute an ApplyPlan with per-stage journal checkpoints."""

from __future__ import annotations

import copy
import logging
import os
from collections.abc import Callable, Iterable, Sequence

from bop.core.commands import Systemctl
from bop.core.errors import BootloaderError, BopError, ConflictingServiceError, NotRootError
from bop.core.fsroot import FsRoot
from bop.core.hardware import HardwareView
from bop.core.journal import merge_backups, new_journal, now_rfc3339
from bop.core.model import ApplyJournal, ApplyPlan, KernelParamBackup, PlannedWrite, SysfsChange
from bop.core.wake import wakeup_enabled
from bop.ops.base import ApplyOps

LOGGER = logging.getLogger(__name__)

CONFLICTING_SERVICES = ("tlp.service",)


def is_root() -> bool:
    return os.geteuid() == 0


def check_root(operation: str, probe: Callable[[], bool] = is_root) -> None:
    if not probe():
        raise NotRootError(operation)


def persistence_plan(journal: ApplyJournal) -> ApplyPlan:
    """The boot-time replay of every journaled sysfs change, earlier runs included."""
    return ApplyPlan(
        sysfs_writes=tuple(
            PlannedWrite(path=change.path, value=change.new_value, description="replay at boot")
            for change in journal.sysfs_changes
        ),
        systemd_service=True,
    )


class _Run:
    """Journal being built by one apply invocation, plus its fence bookkeeping."""

    def __init__(self, journal: ApplyJournal, ops: ApplyOps) -> None:
        self.journal = journal
        self.ops = ops
        self.mutated = False

    def fence(self) -> None:
        if self.mutated:
            self.ops.save_state(self.journal)

    def record_sysfs(self, path: str, original: str, value: str) -> None:
        changes = self.journal.sysfs_changes
        for idx, change in enumerate(changes):
            if change.path == path:
                # First recorded original is the pristine value.
                changes[idx] = SysfsChange(path=path, original_value=change.original_value, new_value=value)
                break
        else:
            changes.append(SysfsChange(path=path, original_value=original, new_value=value))
        self.mutated = True

    def record_unique(self, items: list[str], value: str) -> None:
        if value not in items:
            items.append(value)
        self.mutated = True

    def record_kernel_params(self, params: Sequence[str], backups: Iterable[KernelParamBackup]) -> None:
        for param in params:
            if param not in self.journal.kernel_params_added:
                self.journal.kernel_params_added.append(param)
        self.journal.kernel_param_backups = merge_backups(self.journal.kernel_param_backups, backups)
        self.mutated = True


class ApplyEngine:
    def __init__(
        self,
        fs: FsRoot,
        ops: ApplyOps,
        *,
        systemctl: Systemctl | None = None,
        root_probe: Callable[[], bool] = is_root,
        conflicting_services: Sequence[str] = CONFLICTING_SERVICES,
    ) -> None:
        self.fs = fs
        self.ops = ops
        self.systemctl = systemctl or Systemctl()
        self.root_probe = root_probe
        self.conflicting_services = tuple(conflicting_services)

    def check_conflicts(self) -> None:
        for unit in self.conflicting_services:
            if self.systemctl.is_active(unit):
                name = unit.removesuffix(".service")
                raise ConflictingServiceError(
                    f"{unit} is currently running. Stop it first: "
                    f"sudo systemctl stop {name} && sudo systemctl disable {name}"
                )

    def dry_run(self, plan: ApplyPlan) -> list[str]:
        """Describe what :meth:`apply` would do without touching anything."""
        self.check_conflicts()
        trace: list[str] = []
        for write in plan.sysfs_writes:
            original = self.fs.read_optional(write.path) or ""
            trace.append(f"[dry-run] {write.path} -> {write.value} (was: {original})")
        for device in plan.acpi_wakeup_disable:
            trace.append(f"[dry-run] Disable ACPI wakeup: {device}")
        if plan.kernel_params:
            trace.append(f"[dry-run] Add kernel params: {' '.join(plan.kernel_params)}")
        for config in plan.modprobe_configs:
            trace.append(f"[dry-run] Write modprobe config: {config.filename}")
        for service in plan.services_to_disable:
            trace.append(f"[dry-run] Disable service: {service}")
        if plan.systemd_service and plan.sysfs_writes:
            trace.append("[dry-run] Generate and enable boot persistence unit")
        return trace

    def apply(
        self,
        view: HardwareView,
        plan: ApplyPlan,
        *,
        prior: ApplyJournal | None = None,
    ) -> ApplyJournal:
        """Run ``plan`` and return the journal.

        ``prior`` is an existing journal to continue; its pristine originals
        and backups are kept. Any failure persists what was done so far and
        re-raises.
        """
        check_root("apply", self.root_probe)
        self.check_conflicts()

        if prior is not None:
            journal = copy.deepcopy(prior)
            journal.timestamp = now_rfc3339()
        else:
            journal = new_journal()
        run = _Run(journal, self.ops)

        try:
            self._execute(run, view, plan)
        except BopError:
            if run.mutated:
                LOGGER.warning("apply aborted, persisting partial journal")
                try:
                    self.ops.save_state(run.journal)
                except BopError as save_exc:
                    LOGGER.error("could not persist partial journal: %s", save_exc)
            raise
        return run.journal

    def _execute(self, run: _Run, view: HardwareView, plan: ApplyPlan) -> None:
        for write in plan.sysfs_writes:
            try:
                original = self.fs.read_optional(write.path) or ""
            except BopError:
                original = ""
            self.ops.write_sysfs(write.path, write.value)
            run.record_sysfs(write.path, original, write.value)
            LOGGER.debug("%s: %s -> %s", write.description, original, write.value)

        for device in plan.acpi_wakeup_disable:
            if wakeup_enabled(self.fs, device):
                self.ops.toggle_acpi_wakeup(device)
                run.record_unique(run.journal.acpi_wakeup_toggled, device)
        run.fence()

        if plan.kernel_params:
            try:
                backups = self.ops.add_kernel_params(plan.kernel_params)
            except BootloaderError as exc:
                if exc.backups:
                    run.record_kernel_params(plan.kernel_params, exc.backups)
                raise
            run.record_kernel_params(plan.kernel_params, backups)
            run.fence()

        if plan.modprobe_configs:
            for config in plan.modprobe_configs:
                path = self.ops.write_modprobe_config(config)
                run.record_unique(run.journal.modprobe_files_created, path)
            run.fence()

        for service in plan.services_to_disable:
            self.ops.disable_service(service)
            run.record_unique(run.journal.services_disabled, service)
        run.fence()

        if plan.systemd_service and plan.sysfs_writes:
            unit_path = self.ops.generate_unit(view, persistence_plan(run.journal))
            run.record_unique(run.journal.systemd_units_created, unit_path)
            run.fence()
            self.ops.enable_unit()
