"""Backlight dimming on battery and restoration on revert."""

from __future__ import annotations

import logging

from bop.core.config import BrightnessConfig
from bop.core.fsroot import FsRoot
from bop.core.hardware import BACKLIGHT_BASE

LOGGER = logging.getLogger(__name__)


def find_backlight(fs: FsRoot) -> str | None:
    names = fs.list_dir(BACKLIGHT_BASE, missing_ok=True)
    if not names:
        return None
    return f"{BACKLIGHT_BASE}/{names[0]}"


def _read_int(fs: FsRoot, rel: str) -> int:
    value = fs.read_optional(rel)
    try:
        return int(value) if value is not None else 0
    except ValueError:
        return 0


def dim(config: BrightnessConfig, fs: FsRoot) -> int | None:
    """Dim to ``dim_percent``% of the current level; returns the original level.

    None means nothing was written: dimming is off, there is no backlight, or
    the target would not be lower than the current level.
    """
    if not config.auto_dim:
        return None
    base = find_backlight(fs)
    if base is None:
        return None

    current = _read_int(fs, f"{base}/brightness")
    if current == 0 or _read_int(fs, f"{base}/max_brightness") == 0:
        return None

    target = max(current * config.dim_percent // 100, 1)
    if target >= current:
        return None

    fs.write(f"{base}/brightness", str(target))
    LOGGER.info("dimmed backlight %s from %d to %d", base, current, target)
    return current


def restore(original: int, fs: FsRoot) -> None:
    base = find_backlight(fs)
    if base is None:
        return
    fs.write(f"{base}/brightness", str(original))
    LOGGER.info("restored backlight %s to %d", base, original)
