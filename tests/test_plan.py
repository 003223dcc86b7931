from __future__ import annotations

from pathlib import Path

from conftest import WAKEUP, FakeSystemctl

from bop.core.fsroot import FsRoot
from bop.core.hardware import detect_hardware
from bop.core.plan import PlanBuilder, PolicyMode


def _build(root: Path, mode: PolicyMode = PolicyMode.NORMAL, systemctl: FakeSystemctl | None = None):
    fs = FsRoot(root)
    return PlanBuilder(fs, systemctl=systemctl or FakeSystemctl()).build(detect_hardware(fs), mode)


def test_normal_plan(framework_root: Path) -> None:
    plan = _build(framework_root)

    assert [(w.path, w.value) for w in plan.sysfs_writes] == [
        ("/sys/devices/system/cpu/cpu0/cpufreq/energy_performance_preference", "balance_power"),
        ("/sys/devices/system/cpu/cpu1/cpufreq/energy_performance_preference", "balance_power"),
        ("/sys/firmware/acpi/platform_profile", "low-power"),
        ("/sys/module/pcie_aspm/parameters/policy", "powersave"),
        ("/sys/bus/pci/devices/0000:00:08.1/power/control", "auto"),
        ("/sys/module/snd_hda_intel/parameters/power_save", "1"),
        ("/sys/module/snd_hda_intel/parameters/power_save_controller", "Y"),
        ("/proc/sys/kernel/nmi_watchdog", "0"),
        ("/proc/sys/vm/dirty_writeback_centisecs", "1500"),
    ]
    assert plan.kernel_params == ("acpi.ec_no_wakeup=1", "rtc_cmos.use_acpi_alarm=1", "amdgpu.abmlevel=3")
    assert plan.acpi_wakeup_disable == ("XHC1",)
    assert plan.services_to_disable == ()
    assert plan.systemd_service
    assert [c.filename for c in plan.modprobe_configs] == ["bop-audio.conf"]


def test_pci_writes_follow_address_order(framework_root: Path, files) -> None:
    files(
        framework_root,
        {
            "sys/bus/pci/devices/0000:c4:00.0/power/control": "on\n",
            "sys/bus/pci/devices/0000:01:00.0/power/control": "on\n",
        },
    )
    paths = [w.path for w in _build(framework_root).sysfs_writes if w.path.startswith("/sys/bus/pci/")]
    assert paths == [
        "/sys/bus/pci/devices/0000:00:08.1/power/control",
        "/sys/bus/pci/devices/0000:01:00.0/power/control",
        "/sys/bus/pci/devices/0000:c4:00.0/power/control",
    ]


def test_planning_is_idempotent(framework_root: Path) -> None:
    fs = FsRoot(framework_root)
    view = detect_hardware(fs)
    builder = PlanBuilder(fs, systemctl=FakeSystemctl())
    for mode in PolicyMode:
        assert builder.build(view, mode) == builder.build(view, mode)
    assert _build(framework_root) == _build(framework_root)


def test_aggressive_plan(framework_root: Path) -> None:
    plan = _build(framework_root, PolicyMode.AGGRESSIVE)
    writes = {w.path: w.value for w in plan.sysfs_writes}
    assert writes["/sys/devices/system/cpu/cpu0/cpufreq/energy_performance_preference"] == "power"
    assert writes["/sys/module/pcie_aspm/parameters/policy"] == "powersupersave"
    assert writes["/sys/devices/system/cpu/cpufreq/boost"] == "0"


def test_reduced_plan_is_sysfs_only(framework_root: Path) -> None:
    plan = _build(framework_root, PolicyMode.REDUCED, FakeSystemctl(active={"power-profiles-daemon.service"}))
    assert plan.sysfs_writes
    assert plan.systemd_service
    assert plan.kernel_params == ()
    assert plan.services_to_disable == ()
    assert plan.acpi_wakeup_disable == ()
    assert plan.modprobe_configs == ()


def test_enabled_conflicting_services_are_planned(framework_root: Path) -> None:
    plan = _build(framework_root, systemctl=FakeSystemctl(enabled={"power-profiles-daemon.service"}))
    assert plan.services_to_disable == ("power-profiles-daemon.service",)


def test_replanning_after_apply_is_empty(framework_root: Path, files) -> None:
    first = _build(framework_root)
    for write in first.sysfs_writes:
        files(framework_root, {write.path.lstrip("/"): f"{write.value}\n"})
    files(
        framework_root,
        {
            "proc/cmdline": "quiet " + " ".join(first.kernel_params) + "\n",
            "proc/acpi/wakeup": WAKEUP.replace("XHC1\t  S4\t*enabled", "XHC1\t  S4\t*disabled"),
        },
    )

    second = _build(framework_root)
    assert second.is_empty()
    assert not second.systemd_service


def test_non_usb_and_essential_sources_never_disabled(framework_root: Path, files) -> None:
    files(
        framework_root,
        {"proc/acpi/wakeup": WAKEUP.replace("*disabled  pci:0000:00:02.2", "*enabled   pci:0000:00:02.2")},
    )
    plan = _build(framework_root)
    assert "GPP6" not in plan.acpi_wakeup_disable
    assert "XHC0" not in plan.acpi_wakeup_disable
    assert "XHC2" not in plan.acpi_wakeup_disable


def test_input_devices_keep_autosuspend_off_outside_aggressive(framework_root: Path, files) -> None:
    files(
        framework_root,
        {
            "sys/bus/usb/devices/1-1/power/control": "on\n",
            "sys/bus/usb/devices/3-1/power/control": "on\n",
        },
    )
    normal = [w.path for w in _build(framework_root).sysfs_writes]
    aggressive = [w.path for w in _build(framework_root, PolicyMode.AGGRESSIVE).sysfs_writes]

    assert "/sys/bus/usb/devices/1-1/power/control" not in normal
    assert "/sys/bus/usb/devices/3-1/power/control" in normal
    assert "/sys/bus/usb/devices/1-1/power/control" in aggressive


def test_abmlevel_at_target_is_kept(framework_root: Path, files) -> None:
    files(framework_root, {"proc/cmdline": "quiet amdgpu.abmlevel=4\n"})
    assert "amdgpu.abmlevel=3" not in _build(framework_root).kernel_params
