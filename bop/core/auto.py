"""AC/battery auto-switching: run lock, udev rule and systemd inhibitors."""

from __future__ import annotations

import errno
import logging
import os
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from subprocess import CompletedProcess

from bop.core import commands
from bop.core.config import InhibitorMode
from bop.core.errors import BopError
from bop.core.fsroot import FsRoot

LOGGER = logging.getLogger(__name__)

DEFAULT_BINARY = "/usr/bin/bop"

Runner = Callable[[Sequence[str]], "CompletedProcess[str] | None"]


class AutoOutcome(str, Enum):
    APPLIED = "applied"
    REVERTED = "reverted"
    NOOP = "noop"
    NO_PROFILE = "no-profile"
    NO_AC_ADAPTER = "no-ac-adapter"
    INHIBITED = "inhibited"


class ApplyScope(str, Enum):
    FULL = "full"
    REDUCED = "reduced"
    SKIP = "skip"


@dataclass(frozen=True)
class Inhibitor:
    who: str
    what: str
    why: str = ""


@dataclass(frozen=True)
class AutoStatus:
    enabled: bool
    mode: str | None
    ac_found: bool
    on_ac: bool
    applied: bool


def parse_inhibitors(text: str) -> list[Inhibitor]:
    """Parse ``systemd-inhibit --list --no-legend`` rows (WHO UID USER PID COMM WHAT WHY MODE)."""
    inhibitors = []
    for line in text.splitlines():
        fields = line.split(None, 6)
        if len(fields) < 6:
            continue
        why = fields[6].rsplit(None, 1)[0] if len(fields) > 6 else ""
        inhibitors.append(Inhibitor(who=fields[0], what=fields[5], why=why))
    return inhibitors


def check_inhibitors(runner: Runner = commands.run_command) -> list[Inhibitor]:
    result = runner(["systemd-inhibit", "--list", "--no-pager", "--no-legend"])
    if result is None or result.returncode != 0:
        # No inhibitor information means nothing is blocking.
        return []
    return parse_inhibitors(result.stdout or "")


def should_apply(mode: InhibitorMode, inhibitors: Sequence[Inhibitor]) -> ApplyScope:
    if not inhibitors:
        return ApplyScope.FULL
    return {
        InhibitorMode.SKIP: ApplyScope.SKIP,
        InhibitorMode.REDUCED: ApplyScope.REDUCED,
        InhibitorMode.FULL: ApplyScope.FULL,
    }[mode]


class AutoLock:
    """PID lock file created with ``O_EXCL``; a lock whose PID is gone is stale."""

    def __init__(self, path: str | os.PathLike[str], *, proc_root: str | os.PathLike[str] = "/proc") -> None:
        self.path = Path(path)
        self.proc_root = Path(proc_root)
        self.held = False

    def acquire(self) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.warning("cannot create lock directory %s: %s", self.path.parent, exc)
            return False

        for _ in range(2):
            try:
                fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
            except FileExistsError:
                if not self._remove_if_stale():
                    return False
                continue
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(str(os.getpid()))
            self.held = True
            return True
        return False

    def _remove_if_stale(self) -> bool:
        try:
            pid = int(self.path.read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            return False
        if (self.proc_root / str(pid)).exists():
            LOGGER.debug("lock %s held by running pid %d", self.path, pid)
            return False
        LOGGER.warning("removing stale lock %s (pid %d is gone)", self.path, pid)
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        return True

    def release(self) -> None:
        if not self.held:
            return
        try:
            self.path.unlink()
        except OSError as exc:
            if exc.errno != errno.ENOENT:
                LOGGER.warning("failed to remove lock %s: %s", self.path, exc)
        self.held = False


def udev_rule_content(aggressive: bool, binary: str = DEFAULT_BINARY) -> str:
    command = f"{binary} --aggressive auto" if aggressive else f"{binary} auto"
    return (
        "# Managed by bop - do not edit\n"
        'ACTION=="change", SUBSYSTEM=="power_supply", KERNEL!="hidpp_battery*", '
        f'RUN+="{command}"\n'
    )


class UdevRule:
    def __init__(
        self,
        fs: FsRoot,
        path: str,
        *,
        binary: str = DEFAULT_BINARY,
        runner: Runner = commands.run_command,
    ) -> None:
        self.fs = fs
        self.path = path
        self.binary = binary
        self.runner = runner

    def installed(self) -> bool:
        return self.fs.exists(self.path)

    def mode(self) -> str | None:
        content = self.fs.read_optional(self.path)
        if content is None:
            return None
        return "aggressive" if "--aggressive" in content else "normal"

    def install(self, aggressive: bool) -> None:
        try:
            self.fs.write(self.path, udev_rule_content(aggressive, self.binary), create_parents=True)
        except BopError as exc:
            raise BopError(f"failed to write udev rule: {exc}", path=self.path) from exc
        self.reload()

    def remove(self) -> bool:
        """Delete the rule; False when it was not installed."""
        if not self.installed():
            return False
        try:
            self.fs.remove(self.path)
        except BopError as exc:
            raise BopError(f"failed to remove udev rule: {exc}", path=self.path) from exc
        self.reload()
        return True

    def reload(self) -> None:
        self.runner(["udevadm", "control", "--reload-rules"])
        self.runner(["udevadm", "trigger", "--subsystem-match=power_supply"])
