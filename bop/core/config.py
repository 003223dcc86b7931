"""Per-process settings, loaded from ``/etc/bop/config.yaml`` and the environment."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from bop.core.errors import ConfigError
from bop.core.journal import DEFAULT_STATE_FILE
from bop.core.profiles import DEFAULT_PROFILE_DIRS
from bop.core.yamlio import normalize_bool, read_yaml, validate

DEFAULT_CONFIG_FILE = Path("/etc/bop/config.yaml")
DEFAULT_LOCK_FILE = Path("/run/bop/auto.lock")
LOGGER = logging.getLogger(__name__)


class InhibitorMode(str, Enum):
    SKIP = "skip"
    REDUCED = "reduced"
    FULL = "full"


@dataclass(frozen=True)
class BrightnessConfig:
    auto_dim: bool = False
    dim_percent: int = 60


@dataclass(frozen=True)
class Settings:
    """Everything that varies between production and tests.

    ``state_file`` and ``lock_file`` are real paths; the remaining file
    locations are resolved through the ``FsRoot`` built from ``root``.
    """

    root: Path = Path("/")
    state_file: Path = DEFAULT_STATE_FILE
    lock_file: Path = DEFAULT_LOCK_FILE
    profile_dirs: tuple[Path, ...] = DEFAULT_PROFILE_DIRS
    udev_rule_path: str = "/etc/udev/rules.d/85-bop.rules"
    unit_dir: str = "/etc/systemd/system"
    unit_name: str = "bop-powersave.service"
    modprobe_dir: str = "/etc/modprobe.d"
    binary: str = "/usr/bin/bop"
    brightness: BrightnessConfig = field(default_factory=BrightnessConfig)
    inhibitor_mode: InhibitorMode = InhibitorMode.REDUCED

    @property
    def unit_path(self) -> str:
        return f"{self.unit_dir}/{self.unit_name}"


def load_settings(
    path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> Settings:
    env = os.environ if env is None else env
    if path is None:
        path = Path(env.get("BOP_CONFIG", DEFAULT_CONFIG_FILE))

    doc = {}
    if path.exists():
        doc = read_yaml(path, ConfigError)
        validate(doc, "config.schema.json", path, ConfigError)
        LOGGER.debug("loaded configuration from %s", path)

    brightness_doc = doc.get("brightness", {})
    paths_doc = doc.get("paths", {})
    brightness = BrightnessConfig(
        auto_dim=normalize_bool(
            brightness_doc.get("auto_dim", False),
            context=f"{path}: brightness.auto_dim",
            error_cls=ConfigError,
        ),
        dim_percent=int(brightness_doc.get("dim_percent", 60)),
    )

    state_file = Path(env.get("BOP_STATE_FILE") or paths_doc.get("state_file", DEFAULT_STATE_FILE))
    return Settings(
        root=Path(env.get("BOP_ROOT", "/")),
        state_file=state_file,
        lock_file=Path(paths_doc.get("lock_file", DEFAULT_LOCK_FILE)),
        profile_dirs=tuple(Path(p) for p in paths_doc.get("profile_dirs", DEFAULT_PROFILE_DIRS)),
        brightness=brightness,
        inhibitor_mode=InhibitorMode(doc.get("auto", {}).get("inhibitor_mode", InhibitorMode.REDUCED.value)),
    )
