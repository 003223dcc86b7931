"""Stable public API for building tooling on top of bop.

This module is the supported integration surface for third-party callers
(status bars, GUIs, scripts). Avoid importing from internal modules unless
intentionally depending on non-stable internals.
"""

from __future__ import annotations

from bop.core.auto import AutoOutcome, AutoStatus
from bop.core.config import Settings, load_settings
from bop.core.errors import (
    BootloaderError,
    BopError,
    CommandError,
    ConfigError,
    ConflictingServiceError,
    DetectionError,
    NotRootError,
    ParseError,
    ProfileValidationError,
    StateError,
    SysfsReadError,
    SysfsWriteError,
)
from bop.core.fsroot import FsRoot
from bop.core.hardware import HardwareView
from bop.core.model import ApplyJournal, ApplyPlan, Finding, Severity
from bop.core.revert import RevertOutcome
from bop.core.service import ApplyResult, AuditReport, PowerService
from bop.core.status import StatusReport
from bop.core.wake import WakeController, WakeScanResult

__all__ = [
    "BopError",
    "BootloaderError",
    "CommandError",
    "ConfigError",
    "ConflictingServiceError",
    "DetectionError",
    "NotRootError",
    "ParseError",
    "ProfileValidationError",
    "StateError",
    "SysfsReadError",
    "SysfsWriteError",
    "ApplyJournal",
    "ApplyPlan",
    "ApplyResult",
    "AuditReport",
    "AutoOutcome",
    "AutoStatus",
    "Finding",
    "FsRoot",
    "HardwareView",
    "RevertOutcome",
    "Settings",
    "Severity",
    "StatusReport",
    "WakeController",
    "WakeScanResult",
    "Client",
]


class Client:
    """Public client for bop's audit, apply, revert and status operations.

    Mutating calls need root, exactly as the CLI does. Pass ``settings`` to
    point a client at a fixture tree or an alternate journal.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._service = PowerService(settings or load_settings())

    @property
    def settings(self) -> Settings:
        return self._service.settings

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    def hardware(self) -> HardwareView:
        return self._service.detect()

    def audit(self, *, aggressive: bool = False) -> AuditReport:
        return self._service.audit(aggressive=aggressive)

    def plan(self, *, aggressive: bool = False) -> ApplyPlan:
        _, plan = self._service.preview(aggressive=aggressive)
        return plan

    def apply(self, *, aggressive: bool = False, dry_run: bool = False) -> ApplyResult:
        return self._service.apply(aggressive=aggressive, dry_run=dry_run)

    def revert(self) -> RevertOutcome | None:
        return self._service.revert()

    def status(self) -> StatusReport | None:
        return self._service.status()

    def wake_controllers(self) -> list[WakeController]:
        return self._service.wake_controllers()

    def wake_scan(self) -> WakeScanResult:
        return self._service.wake_scan()

    def auto(self, *, aggressive: bool = False) -> AutoOutcome:
        return self._service.auto(aggressive=aggressive)

    def auto_status(self) -> AutoStatus:
        return self._service.auto_status()
