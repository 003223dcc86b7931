"""Service layer used by the CLI and the public API."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from bop.core import brightness
from bop.core.audit import calculate_score
from bop.core.auto import (
    ApplyScope,
    AutoLock,
    AutoOutcome,
    AutoStatus,
    Inhibitor,
    UdevRule,
    check_inhibitors,
    should_apply,
)
from bop.core.commands import Systemctl
from bop.core.config import Settings, load_settings
from bop.core.engine import ApplyEngine, check_root, is_root
from bop.core.errors import BopError
from bop.core.fsroot import FsRoot
from bop.core.hardware import HardwareView, detect_hardware
from bop.core.journal import JournalStore
from bop.core.model import ApplyJournal, ApplyPlan, Finding
from bop.core.plan import PlanBuilder, PolicyMode
from bop.core.profiles import HardwareProfile, detect_profile, load_profiles
from bop.core.revert import RevertEngine, RevertOutcome
from bop.core.snapshot import Snapshot, capture
from bop.core.status import StatusChecker, StatusReport
from bop.core.wake import WakeController, WakeScanResult, WakeupManager
from bop.ops.system import SystemOps

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditReport:
    hardware: HardwareView
    profile: HardwareProfile
    findings: tuple[Finding, ...]
    score: int


@dataclass(frozen=True)
class ApplyResult:
    profile: HardwareProfile
    plan: ApplyPlan
    journal: ApplyJournal | None = None
    trace: tuple[str, ...] = ()

    @property
    def dry_run(self) -> bool:
        return self.journal is None


class PowerService:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        fs: FsRoot | None = None,
        systemctl: Systemctl | None = None,
        store: JournalStore | None = None,
        ops: SystemOps | None = None,
        root_probe: Callable[[], bool] = is_root,
        inhibitors: Callable[[], list[Inhibitor]] = check_inhibitors,
    ) -> None:
        self.settings = settings or load_settings()
        self.fs = fs or FsRoot(self.settings.root)
        self.systemctl = systemctl or Systemctl()
        self.store = store or JournalStore(self.settings.state_file)
        self.ops = ops or SystemOps(self.fs, self.settings, store=self.store, systemctl=self.systemctl)
        self.root_probe = root_probe
        self.inhibitors = inhibitors
        loaded = load_profiles(self.settings.profile_dirs)
        self.profiles = loaded
        self.load_warnings = loaded.warnings

    def detect(self) -> HardwareView:
        return detect_hardware(self.fs)

    def _require_profile(self, hw: HardwareView) -> HardwareProfile:
        profile = detect_profile(self.profiles, hw)
        if profile is None:
            raise BopError("No hardware profile matched this machine")
        return profile

    def audit(self, *, aggressive: bool = False) -> AuditReport:
        hw = self.detect()
        profile = self._require_profile(hw)
        findings = profile.registry(aggressive=aggressive).run(hw, self.fs)
        return AuditReport(hardware=hw, profile=profile, findings=tuple(findings), score=calculate_score(findings))

    def build_plan(self, hw: HardwareView, mode: PolicyMode) -> ApplyPlan:
        return PlanBuilder(self.fs, systemctl=self.systemctl).build(hw, mode)

    def _engine(self) -> ApplyEngine:
        return ApplyEngine(self.fs, self.ops, systemctl=self.systemctl, root_probe=self.root_probe)

    def apply(self, *, aggressive: bool = False, dry_run: bool = False) -> ApplyResult:
        hw = self.detect()
        profile = self._require_profile(hw)
        plan = self.build_plan(hw, PolicyMode.AGGRESSIVE if aggressive else PolicyMode.NORMAL)
        engine = self._engine()
        if dry_run:
            return ApplyResult(profile=profile, plan=plan, trace=tuple(engine.dry_run(plan)))
        journal = engine.apply(hw, plan, prior=self.store.load())
        return ApplyResult(profile=profile, plan=plan, journal=journal)

    def preview(self, *, aggressive: bool = False) -> tuple[HardwareProfile, ApplyPlan]:
        hw = self.detect()
        profile = self._require_profile(hw)
        return profile, self.build_plan(hw, PolicyMode.AGGRESSIVE if aggressive else PolicyMode.NORMAL)

    def revert(self) -> RevertOutcome | None:
        check_root("revert", self.root_probe)
        journal = self.store.load()
        if journal is None:
            return None
        engine = RevertEngine(self.ops, journal_path=str(self.store.path), root_probe=self.root_probe)
        return engine.revert(journal)

    def status(self) -> StatusReport | None:
        journal = self.store.load()
        if journal is None:
            return None
        return StatusChecker(self.fs, systemctl=self.systemctl).check(journal)

    def wake_controllers(self) -> list[WakeController]:
        return WakeupManager(self.fs).controllers()

    def wake_enable(self, controller: str) -> bool:
        check_root("wake enable", self.root_probe)
        return WakeupManager(self.fs).enable(controller)

    def wake_disable(self, controller: str) -> bool:
        check_root("wake disable", self.root_probe)
        return WakeupManager(self.fs).disable(controller)

    def wake_scan(self) -> WakeScanResult:
        check_root("wake scan", self.root_probe)
        return WakeupManager(self.fs).scan()

    def _udev_rule(self) -> UdevRule:
        return UdevRule(self.fs, self.settings.udev_rule_path, binary=self.settings.binary)

    def auto(self, *, aggressive: bool = False) -> AutoOutcome:
        """Apply on battery, revert on AC; a no-op while another run holds the lock."""
        check_root("auto", self.root_probe)
        lock = AutoLock(self.settings.lock_file)
        if not lock.acquire():
            LOGGER.info("another auto run holds %s", lock.path)
            return AutoOutcome.NOOP
        try:
            return self._auto_locked(aggressive)
        finally:
            lock.release()

    def _auto_locked(self, aggressive: bool) -> AutoOutcome:
        hw = self.detect()
        if not hw.ac.found:
            return AutoOutcome.NO_AC_ADAPTER
        if detect_profile(self.profiles, hw) is None:
            return AutoOutcome.NO_PROFILE

        prior = self.store.load()
        if hw.ac.is_on_battery() and prior is None:
            scope = should_apply(self.settings.inhibitor_mode, self.inhibitors())
            if scope is ApplyScope.SKIP:
                LOGGER.info("sleep inhibitors active, skipping apply")
                return AutoOutcome.INHIBITED
            if scope is ApplyScope.REDUCED:
                mode = PolicyMode.REDUCED
            else:
                mode = PolicyMode.AGGRESSIVE if aggressive else PolicyMode.NORMAL
            plan = self.build_plan(hw, mode)
            journal = self._engine().apply(hw, plan)
            original = brightness.dim(self.settings.brightness, self.fs)
            if original is not None:
                journal.brightness_original = original
                self.ops.save_state(journal)
            if journal.is_empty():
                return AutoOutcome.NOOP
            LOGGER.info("on battery: applied %s optimizations", mode.value)
            return AutoOutcome.APPLIED

        if hw.ac.is_on_ac() and prior is not None:
            outcome = RevertEngine(self.ops, journal_path=str(self.store.path), root_probe=self.root_probe).revert(prior)
            if not outcome.complete:
                LOGGER.warning("on AC: revert incomplete, %d step(s) failed", len(outcome.errors))
            else:
                LOGGER.info("on AC: reverted optimizations")
            return AutoOutcome.REVERTED

        return AutoOutcome.NOOP

    def auto_enable(self, *, aggressive: bool = False) -> AutoOutcome:
        check_root("auto enable", self.root_probe)
        self._udev_rule().install(aggressive)
        return self.auto(aggressive=aggressive)

    def auto_disable(self) -> bool:
        check_root("auto disable", self.root_probe)
        return self._udev_rule().remove()

    def auto_status(self) -> AutoStatus:
        rule = self._udev_rule()
        hw = self.detect()
        try:
            applied = self.store.load() is not None
        except BopError as exc:
            LOGGER.warning("cannot read journal: %s", exc)
            applied = False
        return AutoStatus(
            enabled=rule.installed(),
            mode=rule.mode(),
            ac_found=hw.ac.found,
            on_ac=hw.ac.is_on_ac(),
            applied=applied,
        )

    def snapshot(self) -> Snapshot:
        return capture(self.fs)
