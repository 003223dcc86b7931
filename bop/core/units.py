"""Rendering of the boot-persistence systemd unit."""

from __future__ import annotations

import re

from bop.core.errors import BopError
from bop.core.hardware import HardwareView
from bop.core.model import ApplyPlan

_SAFE_TOKEN_RE = re.compile(r"^[A-Za-z0-9_.:/+-]+$")


def _check_token(value: str, what: str) -> str:
    if not _SAFE_TOKEN_RE.match(value):
        raise BopError(f"refusing to embed unsafe {what} {value!r} in systemd unit")
    return value


def render_unit(view: HardwareView, plan: ApplyPlan) -> str:
    """A oneshot service that replays the plan's sysfs writes at boot."""
    machine = " ".join(p for p in (view.dmi.board_vendor, view.dmi.product_name) if p) or "unknown machine"
    lines = [
        "# Managed by bop; removed by 'bop revert'",
        f"# Hardware: {machine}",
        "[Unit]",
        "Description=bop power optimizations",
        "After=multi-user.target",
        "",
        "[Service]",
        "Type=oneshot",
        "RemainAfterExit=yes",
    ]
    for write in plan.sysfs_writes:
        path = _check_token(write.path, "path")
        value = _check_token(write.value, "value")
        lines.append(f"ExecStart=/bin/sh -c 'echo {value} > {path}'")
    lines += [
        "",
        "[Install]",
        "WantedBy=multi-user.target",
        "",
    ]
    return "\n".join(lines)
