"""External command helpers (systemctl, udevadm, iw, logger...)."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence

from bop.core.errors import CommandError

LOGGER = logging.getLogger(__name__)


def run_command(cmd: Sequence[str]) -> subprocess.CompletedProcess[str] | None:
    """Run ``cmd`` without raising on failure; None when the binary is missing."""
    LOGGER.debug("running %s", " ".join(cmd))
    try:
        return subprocess.run(
            list(cmd),
            check=False,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError:
        LOGGER.debug("command not found: %s", cmd[0])
        return None


def succeeded(cmd: Sequence[str]) -> bool:
    result = run_command(cmd)
    return result is not None and result.returncode == 0


def check_command(cmd: Sequence[str]) -> subprocess.CompletedProcess[str]:
    result = run_command(cmd)
    if result is None:
        raise CommandError(f"{cmd[0]} not found")
    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        detail = f": {stderr}" if stderr else ""
        raise CommandError(f"{' '.join(cmd)} exited with status {result.returncode}{detail}")
    return result


class Systemctl:
    """Thin wrapper around ``systemctl``; exit status is the only signal used."""

    def is_active(self, unit: str) -> bool:
        return succeeded(["systemctl", "is-active", "--quiet", unit])

    def is_enabled(self, unit: str) -> bool:
        return succeeded(["systemctl", "is-enabled", "--quiet", unit])

    def is_active_or_enabled(self, unit: str) -> bool:
        return self.is_active(unit) or self.is_enabled(unit)

    def disable(self, unit: str) -> None:
        """Stop and disable ``unit``; mask it when disable is refused."""
        run_command(["systemctl", "stop", unit])
        result = run_command(["systemctl", "disable", unit])
        if result is None:
            raise CommandError(f"failed to disable {unit}: systemctl not found")
        if result.returncode != 0:
            LOGGER.warning("systemctl disable %s failed, masking instead", unit)
            check_command(["systemctl", "mask", unit])

    def enable(self, unit: str) -> None:
        run_command(["systemctl", "unmask", unit])
        check_command(["systemctl", "enable", unit])

    def enable_now(self, unit: str) -> None:
        check_command(["systemctl", "daemon-reload"])
        check_command(["systemctl", "enable", unit])
        check_command(["systemctl", "start", unit])

    def disable_now(self, unit: str) -> None:
        run_command(["systemctl", "stop", unit])
        check_command(["systemctl", "disable", unit])

    def daemon_reload(self) -> None:
        run_command(["systemctl", "daemon-reload"])
