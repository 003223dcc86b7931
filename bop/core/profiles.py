"""Hardware profile loading and matching for YAML-based bop profiles."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

from bop.core.audit import AuditRegistry, resolve_rules
from bop.core.errors import ProfileValidationError
from bop.core.hardware import HardwareView
from bop.core.rules import RULES
from bop.core.yamlio import normalize_bool, read_yaml, validate

DEFAULT_PROFILE_DIRS = (Path("/etc/bop/profiles"),)
LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProfileMatch:
    board_vendor_contains: tuple[str, ...] = ()
    model_contains: tuple[str, ...] = ()
    cpu_vendor: tuple[str, ...] = ()
    battery_present: bool | None = None

    def matches(self, hw: HardwareView) -> bool:
        if self.board_vendor_contains and not any(
            needle in (hw.dmi.board_vendor or "") for needle in self.board_vendor_contains
        ):
            return False
        if self.model_contains and not any(
            needle in (hw.dmi.product_name or "") or needle in (hw.dmi.board_name or "")
            for needle in self.model_contains
        ):
            return False
        if self.cpu_vendor and hw.cpu.vendor not in self.cpu_vendor:
            return False
        if self.battery_present is not None and hw.battery.present != self.battery_present:
            return False
        return True


@dataclass(frozen=True)
class HardwareProfile:
    id: str
    name: str
    priority: int
    match: ProfileMatch
    rules: tuple[str, ...]

    def matches(self, hw: HardwareView) -> bool:
        return self.match.matches(hw)

    def registry(self, *, aggressive: bool = False) -> AuditRegistry:
        return AuditRegistry(resolve_rules(self.rules, aggressive=aggressive))


@dataclass(frozen=True)
class LoadedProfiles:
    profiles: dict[str, HardwareProfile]
    warnings: tuple[str, ...]

    def ordered(self) -> list[HardwareProfile]:
        return sorted(self.profiles.values(), key=lambda p: (-p.priority, p.id))


def _build_profile(doc: dict[str, Any], source: Path | Traversable) -> HardwareProfile:
    validate(doc, "profile.schema.json", source, ProfileValidationError)

    unknown = [name for name in doc["rules"] if name not in RULES]
    if unknown:
        raise ProfileValidationError(
            f"Profile {doc['id']} in {source} references unknown rules: {', '.join(unknown)}",
            path=str(source),
        )

    match_doc = doc["match"]
    battery = match_doc.get("battery_present")
    return HardwareProfile(
        id=doc["id"],
        name=doc["name"],
        priority=int(doc.get("priority", 0)),
        match=ProfileMatch(
            board_vendor_contains=tuple(match_doc.get("board_vendor_contains", [])),
            model_contains=tuple(match_doc.get("model_contains", [])),
            cpu_vendor=tuple(match_doc.get("cpu_vendor", [])),
            battery_present=None
            if battery is None
            else normalize_bool(
                battery,
                context=f"{doc['id']}.match.battery_present",
                error_cls=ProfileValidationError,
            ),
        ),
        rules=tuple(doc["rules"]),
    )


def _iter_packaged_profile_paths() -> list[Traversable]:
    profile_root = resources.files("bop.profiles")
    return [item for item in profile_root.iterdir() if item.name.endswith((".yml", ".yaml"))]


def _iter_user_profile_paths(directories: Iterable[Path]) -> list[Path]:
    paths: list[Path] = []
    for directory in directories:
        if not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"}))
    return paths


def load_profiles(user_dirs: Sequence[Path] = DEFAULT_PROFILE_DIRS) -> LoadedProfiles:
    profiles: dict[str, HardwareProfile] = {}
    warnings: list[str] = []

    for path in sorted(_iter_packaged_profile_paths(), key=lambda p: p.name):
        profile = _build_profile(read_yaml(path, ProfileValidationError), path)
        profiles[profile.id] = profile

    for path in _iter_user_profile_paths(user_dirs):
        profile = _build_profile(read_yaml(path, ProfileValidationError), path)
        if profile.id in profiles:
            warning = f"User profile '{profile.id}' overrides packaged profile"
            LOGGER.warning(warning)
            warnings.append(warning)
        profiles[profile.id] = profile

    return LoadedProfiles(profiles=profiles, warnings=tuple(warnings))


def detect_profile(profiles: LoadedProfiles, hw: HardwareView) -> HardwareProfile | None:
    """Highest-priority profile whose predicate matches ``hw``."""
    for profile in profiles.ordered():
        if profile.matches(hw):
            LOGGER.debug("matched hardware profile %s", profile.id)
            return profile
    return None
