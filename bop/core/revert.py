"""Undo a journal, keeping only the steps that still need work."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from bop.core.engine import check_root, is_root
from bop.core.errors import BootloaderError, BopError
from bop.core.journal import JournalStore
from bop.core.model import ApplyJournal
from bop.ops.base import RevertOps

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RevertStep:
    category: str
    target: str
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class RevertOutcome:
    remaining: ApplyJournal
    steps: tuple[RevertStep, ...] = ()
    reboot_required: bool = False
    journal_path: str | None = None

    @property
    def complete(self) -> bool:
        return self.remaining.is_empty()

    @property
    def errors(self) -> tuple[RevertStep, ...]:
        return tuple(step for step in self.steps if not step.ok)


@dataclass
class _Progress:
    steps: list[RevertStep] = field(default_factory=list)

    def attempt(self, category: str, target: str, action: Callable[[], None]) -> bool:
        try:
            action()
        except BopError as exc:
            LOGGER.warning("failed to revert %s %s: %s", category, target, exc)
            self.steps.append(RevertStep(category, target, str(exc)))
            return False
        self.steps.append(RevertStep(category, target))
        return True


class RevertEngine:
    def __init__(
        self,
        ops: RevertOps,
        *,
        journal_path: str | None = None,
        root_probe: Callable[[], bool] = is_root,
    ) -> None:
        self.ops = ops
        self.journal_path = journal_path
        self.root_probe = root_probe

    def revert(self, journal: ApplyJournal) -> RevertOutcome:
        """Undo every entry of ``journal``.

        Entries whose undo fails are kept and written back to the state file;
        the state file is removed only when nothing is left.
        """
        check_root("revert", self.root_probe)
        progress = _Progress()
        remaining = ApplyJournal(timestamp=journal.timestamp)

        kept_sysfs = []
        for change in reversed(journal.sysfs_changes):
            ok = progress.attempt(
                "sysfs",
                f"{change.path} -> {change.original_value}",
                lambda change=change: self.ops.write_sysfs(change.path, change.original_value),
            )
            if not ok:
                kept_sysfs.append(change)
        remaining.sysfs_changes = list(reversed(kept_sysfs))

        for device in journal.acpi_wakeup_toggled:
            if not progress.attempt("wakeup", device, lambda device=device: self.ops.toggle_acpi_wakeup(device)):
                remaining.acpi_wakeup_toggled.append(device)

        self._revert_kernel_params(journal, remaining, progress)

        for service in journal.services_disabled:
            if not progress.attempt("service", service, lambda service=service: self.ops.enable_service(service)):
                remaining.services_disabled.append(service)

        for unit in journal.systemd_units_created:
            if not progress.attempt("unit", unit, lambda unit=unit: self.ops.remove_unit(unit)):
                remaining.systemd_units_created.append(unit)

        for path in journal.modprobe_files_created:
            if not progress.attempt("modprobe", path, lambda path=path: self.ops.remove_modprobe_config(path)):
                remaining.modprobe_files_created.append(path)

        if journal.brightness_original is not None:
            value = journal.brightness_original
            if not progress.attempt("brightness", str(value), lambda: self.ops.restore_brightness(value)):
                remaining.brightness_original = value

        if remaining.is_empty():
            self.ops.clear_state()
            LOGGER.info("revert complete, journal removed")
        else:
            self.ops.save_state(remaining)
            LOGGER.warning("revert incomplete, remaining work kept in %s", self.journal_path or "the journal")

        return RevertOutcome(
            remaining=remaining,
            steps=tuple(progress.steps),
            reboot_required=bool(journal.kernel_params_added or journal.kernel_param_backups),
            journal_path=self.journal_path,
        )

    def _revert_kernel_params(
        self,
        journal: ApplyJournal,
        remaining: ApplyJournal,
        progress: _Progress,
    ) -> None:
        if journal.kernel_param_backups:
            try:
                self.ops.restore_kernel_param_backups(journal.kernel_param_backups)
            except BootloaderError as exc:
                failed = list(exc.backups) or list(journal.kernel_param_backups)
                for backup in journal.kernel_param_backups:
                    error = str(exc) if backup in failed else None
                    progress.steps.append(RevertStep("kernel-params", backup.path, error))
                remaining.kernel_param_backups = failed
                remaining.kernel_params_added = list(journal.kernel_params_added)
                LOGGER.warning("kernel parameter restore incomplete: %s", exc)
                return
            except BopError as exc:
                progress.steps.append(RevertStep("kernel-params", "boot configuration", str(exc)))
                remaining.kernel_param_backups = list(journal.kernel_param_backups)
                remaining.kernel_params_added = list(journal.kernel_params_added)
                return
            for backup in journal.kernel_param_backups:
                progress.steps.append(RevertStep("kernel-params", backup.path))
            return

        if journal.kernel_params_added:
            params = list(journal.kernel_params_added)
            if not progress.attempt("kernel-params", " ".join(params), lambda: self.ops.remove_kernel_params(params)):
                remaining.kernel_params_added = params


def revert_from_store(engine: RevertEngine, store: JournalStore) -> RevertOutcome | None:
    """Load the journal from ``store`` and revert it; None when there is none."""
    journal = store.load()
    if journal is None:
        return None
    return engine.revert(journal)
