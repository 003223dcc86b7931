from __future__ import annotations

from pathlib import Path

import pytest

from bop.core.fsroot import FsRoot
from bop.core.hardware import detect_hardware, parse_acpi_wakeup, parse_bracketed


def test_parse_bracketed() -> None:
    assert parse_bracketed("[default] performance powersave") == ("default", ("default", "performance", "powersave"))
    assert parse_bracketed("s2idle [deep]") == ("deep", ("s2idle", "deep"))
    assert parse_bracketed("powersave") == (None, ("powersave",))
    assert parse_bracketed("") == (None, ())


def test_parse_acpi_wakeup_skips_header() -> None:
    text = (
        "Device\tS-state\t  Status   Sysfs node\n"
        "XHC1\t  S4\t*enabled   pci:0000:c1:00.4\n"
        "PBTN\t  S4\t*disabled\n"
    )
    sources = parse_acpi_wakeup(text)
    assert [s.device for s in sources] == ["XHC1", "PBTN"]
    assert sources[0].enabled
    assert sources[0].pci_address == "0000:c1:00.4"
    assert sources[1].sysfs_node is None
    assert sources[1].pci_address is None


def test_detect_framework_16(framework_root: Path) -> None:
    hw = detect_hardware(FsRoot(framework_root))

    assert hw.dmi.is_framework_16()
    assert hw.cpu.is_amd()
    assert hw.cpu.is_zen4()
    assert hw.cpu.is_amd_pstate()
    assert hw.cpu.cores == (0, 1)
    assert hw.cpu.epp == "balance_performance"
    assert "balance_power" in hw.cpu.epp_available
    assert hw.cpu.has_boost and hw.cpu.boost_enabled

    assert hw.gpu.is_amd()
    assert hw.gpu.card_path == "sys/class/drm/card1/device"
    assert hw.gpu.dpm_level == "auto"
    assert not hw.gpu.has_abm

    assert hw.pci.aspm_policy == "default"
    assert "powersupersave" in hw.pci.aspm_policies_available
    assert [d.address for d in hw.pci.devices_without_runtime_pm()] == ["0000:00:08.1"]

    assert hw.platform.platform_profile == "balanced"
    assert hw.platform.has_s2idle()
    assert [s.device for s in hw.platform.acpi_wakeup_sources] == ["GPP6", "XHC0", "XHC1", "XHC2", "PBTN"]

    assert hw.audio.power_save == "0"
    assert hw.sysctl.nmi_watchdog == "1"
    assert {d.name for d in hw.usb} == {"1-1", "3-1", "usb1", "usb3"}
    assert [c.name for c in hw.connectors] == ["card1-eDP-1"]
    assert hw.kernel_param_value("root") == "UUID=abc"
    assert hw.has_kernel_param("quiet")


def test_detect_power_supplies(framework_root: Path) -> None:
    hw = detect_hardware(FsRoot(framework_root))
    assert hw.ac.found
    assert hw.ac.is_on_battery()
    assert not hw.ac.is_on_ac()
    assert hw.battery.present
    assert hw.battery.is_discharging()
    assert hw.battery.power_watts() == pytest.approx(7.5)
    assert hw.battery.energy_wh() == pytest.approx(68.0)
    assert hw.battery.health_percent == pytest.approx(80 / 85 * 100)


def test_battery_charge_fallback(tmp_path: Path, files) -> None:
    root = files(
        tmp_path,
        {
            "sys/class/power_supply/BAT0/type": "Battery\n",
            "sys/class/power_supply/BAT0/present": "1\n",
            "sys/class/power_supply/BAT0/charge_full": "4000000\n",
            "sys/class/power_supply/BAT0/charge_full_design": "5000000\n",
            "sys/class/power_supply/BAT0/current_now": "1000000\n",
            "sys/class/power_supply/BAT0/voltage_now": "12000000\n",
        },
    )
    hw = detect_hardware(FsRoot(root))
    assert hw.battery.health_percent == pytest.approx(80.0)
    assert hw.battery.power_watts() == pytest.approx(12.0)
    assert not hw.ac.found


def test_empty_root_detects_nothing(tmp_path: Path) -> None:
    hw = detect_hardware(FsRoot(tmp_path))
    assert hw.cpu.cores == ()
    assert hw.gpu.card_path is None
    assert not hw.battery.present
    assert hw.kernel_cmdline == ""


def test_abmlevel_from_cmdline(framework_root: Path, files) -> None:
    files(framework_root, {"proc/cmdline": "quiet amdgpu.abmlevel=2\n"})
    hw = detect_hardware(FsRoot(framework_root))
    assert hw.gpu.has_abm
    assert hw.gpu.abm_level == 2
