from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

WAKEUP = (
    "Device\tS-state\t  Status   Sysfs node\n"
    "GPP6\t  S4\t*disabled  pci:0000:00:02.2\n"
    "XHC0\t  S4\t*enabled   pci:0000:c1:00.3\n"
    "XHC1\t  S4\t*enabled   pci:0000:c1:00.4\n"
    "XHC2\t  S4\t*disabled  pci:0000:c3:00.3\n"
    "PBTN\t  S4\t*disabled\n"
)

FRAMEWORK_16 = {
    "sys/class/dmi/id/board_vendor": "Framework\n",
    "sys/class/dmi/id/board_name": "FRANMZCP09\n",
    "sys/class/dmi/id/product_name": "Laptop 16 (AMD Ryzen 7040 Series)\n",
    "sys/class/dmi/id/bios_version": "03.03\n",
    "proc/cpuinfo": (
        "processor\t: 0\n"
        "vendor_id\t: AuthenticAMD\n"
        "cpu family\t: 25\n"
        "model\t\t: 116\n"
        "model name\t: AMD Ryzen 7 7840HS w/ Radeon 780M Graphics\n"
    ),
    "proc/cmdline": "BOOT_IMAGE=/vmlinuz-linux root=UUID=abc quiet\n",
    "proc/acpi/wakeup": WAKEUP,
    "proc/sys/kernel/nmi_watchdog": "1\n",
    "proc/sys/vm/dirty_writeback_centisecs": "500\n",
    "sys/devices/system/cpu/cpufreq/boost": "1\n",
    "sys/devices/system/cpu/amd_pstate/status": "active\n",
    "sys/firmware/acpi/platform_profile": "balanced\n",
    "sys/firmware/acpi/platform_profile_choices": "low-power balanced performance\n",
    "sys/power/state": "freeze mem disk\n",
    "sys/power/mem_sleep": "[s2idle]\n",
    "sys/module/pcie_aspm/parameters/policy": "[default] performance powersave powersupersave\n",
    "sys/module/snd_hda_intel/parameters/power_save": "0\n",
    "sys/module/snd_hda_intel/parameters/power_save_controller": "N\n",
    "sys/bus/pci/devices/0000:00:08.1/vendor": "0x1022\n",
    "sys/bus/pci/devices/0000:00:08.1/power/control": "on\n",
    "sys/bus/pci/devices/0000:c1:00.0/vendor": "0x1002\n",
    "sys/bus/pci/devices/0000:c1:00.0/power/control": "auto\n",
    "sys/class/drm/card1/device/vendor": "0x1002\n",
    "sys/class/drm/card1/device/power_dpm_force_performance_level": "auto\n",
    "sys/class/drm/card1-eDP-1/status": "connected\n",
    "sys/class/backlight/amdgpu_bl1/brightness": "200\n",
    "sys/class/backlight/amdgpu_bl1/max_brightness": "255\n",
    "sys/class/power_supply/ACAD/type": "Mains\n",
    "sys/class/power_supply/ACAD/online": "0\n",
    "sys/class/power_supply/BAT1/type": "Battery\n",
    "sys/class/power_supply/BAT1/present": "1\n",
    "sys/class/power_supply/BAT1/status": "Discharging\n",
    "sys/class/power_supply/BAT1/capacity": "80\n",
    "sys/class/power_supply/BAT1/energy_now": "68000000\n",
    "sys/class/power_supply/BAT1/energy_full": "80000000\n",
    "sys/class/power_supply/BAT1/energy_full_design": "85000000\n",
    "sys/class/power_supply/BAT1/power_now": "7500000\n",
}

for _cpu in ("cpu0", "cpu1"):
    FRAMEWORK_16.update(
        {
            f"sys/devices/system/cpu/{_cpu}/cpufreq/scaling_driver": "amd-pstate-epp\n",
            f"sys/devices/system/cpu/{_cpu}/cpufreq/scaling_governor": "powersave\n",
            f"sys/devices/system/cpu/{_cpu}/cpufreq/energy_performance_preference": "balance_performance\n",
            f"sys/devices/system/cpu/{_cpu}/cpufreq/energy_performance_available_preferences": (
                "default performance balance_performance balance_power power\n"
            ),
        }
    )


def write_files(root: Path, files: dict[str, str]) -> Path:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


def attach_usb(root: Path, bus: int, pci_address: str, devices: dict[str, str]) -> None:
    """Create root hub ``usb<bus>`` under ``pci_address`` with the given devices."""
    hub = root / "sys/devices/pci0000:00" / pci_address / f"usb{bus}"
    hub.mkdir(parents=True, exist_ok=True)
    link = root / "sys/bus/usb/devices" / f"usb{bus}"
    link.parent.mkdir(parents=True, exist_ok=True)
    link.symlink_to(hub)
    for name, product in devices.items():
        write_files(root, {f"sys/bus/usb/devices/{name}/product": f"{product}\n"})


class FakeSystemctl:
    def __init__(self, active: set[str] | None = None, enabled: set[str] | None = None) -> None:
        self.active = set(active or ())
        self.enabled = set(enabled or ())
        self.calls: list[tuple[str, str]] = []

    def is_active(self, unit: str) -> bool:
        return unit in self.active

    def is_enabled(self, unit: str) -> bool:
        return unit in self.enabled

    def is_active_or_enabled(self, unit: str) -> bool:
        return self.is_active(unit) or self.is_enabled(unit)

    def disable(self, unit: str) -> None:
        self.calls.append(("disable", unit))
        self.active.discard(unit)
        self.enabled.discard(unit)

    def enable(self, unit: str) -> None:
        self.calls.append(("enable", unit))
        self.enabled.add(unit)

    def enable_now(self, unit: str) -> None:
        self.calls.append(("enable_now", unit))

    def disable_now(self, unit: str) -> None:
        self.calls.append(("disable_now", unit))

    def daemon_reload(self) -> None:
        self.calls.append(("daemon_reload", ""))


@pytest.fixture
def framework_root(tmp_path: Path) -> Path:
    root = write_files(tmp_path / "root", FRAMEWORK_16)
    attach_usb(root, 1, "0000:c1:00.3", {"1-1": "Laptop Keyboard"})
    attach_usb(root, 3, "0000:c3:00.3", {"3-1": "USB Receiver", "3-1:1.0": "interface"})
    return root


@pytest.fixture
def files() -> Callable[[Path, dict[str, str]], Path]:
    return write_files
