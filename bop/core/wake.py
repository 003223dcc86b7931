"""ACPI wakeup sources with USB topology awareness.

``/proc/acpi/wakeup`` is an edge-triggered interface: writing a device name
flips its state, so every toggle is preceded by a state check.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from bop.core.errors import BopError
from bop.core.fsroot import FsRoot
from bop.core.hardware import ACPI_WAKEUP, USB_BASE, parse_acpi_wakeup

LOGGER = logging.getLogger(__name__)

USB_CONTROLLER_PREFIX = "XHC"
# Internal keyboard/trackpad controller; never auto-disabled.
ESSENTIAL_CONTROLLERS = frozenset({"XHC0"})


@dataclass(frozen=True)
class WakeController:
    name: str
    pci_address: str | None
    enabled: bool
    devices: tuple[str, ...] = ()

    @property
    def is_usb(self) -> bool:
        return is_usb_wakeup_source(self.name)

    @property
    def has_devices(self) -> bool:
        return bool(self.devices)


@dataclass(frozen=True)
class WakeScanResult:
    enabled: tuple[str, ...]
    disabled: tuple[str, ...]

    @property
    def changes(self) -> int:
        return len(self.enabled) + len(self.disabled)


def is_usb_wakeup_source(name: str) -> bool:
    # TODO: decide whether USB4/Thunderbolt NHI* sources belong here once
    # their wake behaviour is confirmed on hardware with docks attached.
    return name.startswith(USB_CONTROLLER_PREFIX)


def should_enable_in_scan(ctrl: WakeController) -> bool:
    return ctrl.is_usb and ctrl.has_devices and not ctrl.enabled


def should_disable_in_scan(ctrl: WakeController) -> bool:
    return ctrl.is_usb and not ctrl.has_devices and ctrl.enabled and ctrl.name not in ESSENTIAL_CONTROLLERS


def usb_devices_for_pci(fs: FsRoot, pci_address: str | None) -> tuple[str, ...]:
    """Describe the USB devices hanging off the root hubs of ``pci_address``."""
    if not pci_address:
        return ()
    entries = fs.list_dir(USB_BASE, missing_ok=True)
    found: list[str] = []
    for hub in entries:
        if not hub.startswith("usb"):
            continue
        try:
            canonical = fs.canonicalize(f"{USB_BASE}/{hub}")
        except BopError:
            continue
        if pci_address not in str(canonical):
            continue
        bus = hub[len("usb"):]
        for dev in entries:
            if dev.startswith(f"{bus}-") and ":" not in dev:
                base = f"{USB_BASE}/{dev}"
                parts = [p for p in (fs.read_optional(f"{base}/manufacturer"), fs.read_optional(f"{base}/product")) if p]
                found.append(" ".join(parts) or dev)
    return tuple(found)


def scan_controllers(fs: FsRoot) -> list[WakeController]:
    controllers = []
    for source in parse_acpi_wakeup(fs.read(ACPI_WAKEUP)):
        devices = usb_devices_for_pci(fs, source.pci_address) if is_usb_wakeup_source(source.device) else ()
        controllers.append(
            WakeController(
                name=source.device,
                pci_address=source.pci_address,
                enabled=source.enabled,
                devices=devices,
            )
        )
    return controllers


def plan_scan(controllers: list[WakeController]) -> WakeScanResult:
    return WakeScanResult(
        enabled=tuple(c.name for c in controllers if should_enable_in_scan(c)),
        disabled=tuple(c.name for c in controllers if should_disable_in_scan(c)),
    )


def wakeup_enabled(fs: FsRoot, device: str) -> bool | None:
    """Live state of ``device``; None when it is not listed."""
    text = fs.read_optional(ACPI_WAKEUP) or ""
    for source in parse_acpi_wakeup(text):
        if source.device == device:
            return source.enabled
    return None


def toggle_wakeup(fs: FsRoot, device: str) -> None:
    fs.write(ACPI_WAKEUP, device)
    LOGGER.debug("toggled ACPI wakeup for %s", device)


class WakeupManager:
    def __init__(self, fs: FsRoot) -> None:
        self.fs = fs

    def controllers(self) -> list[WakeController]:
        return scan_controllers(self.fs)

    def _set(self, controller: str, enabled: bool) -> bool:
        current = wakeup_enabled(self.fs, controller)
        if current is None:
            raise BopError(f"Controller '{controller}' not found in /{ACPI_WAKEUP}")
        if current == enabled:
            return False
        toggle_wakeup(self.fs, controller)
        return True

    def enable(self, controller: str) -> bool:
        """Enable wake for ``controller``; False when it already was."""
        return self._set(controller, True)

    def disable(self, controller: str) -> bool:
        return self._set(controller, False)

    def scan(self) -> WakeScanResult:
        result = plan_scan(self.controllers())
        for name in result.enabled + result.disabled:
            toggle_wakeup(self.fs, name)
        if result.changes:
            LOGGER.info("wake scan enabled %s, disabled %s", list(result.enabled), list(result.disabled))
        return result
