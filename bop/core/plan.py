"""Diff the detected hardware against a power policy and produce an ApplyPlan."""

from __future__ import annotations

import logging
from enum import Enum

from bop.core.commands import Systemctl
from bop.core.fsroot import FsRoot
from bop.core.hardware import CPU_BASE, PCI_BASE, USB_BASE, HardwareView
from bop.core.model import ApplyPlan, ModprobeConfig, PlannedWrite
from bop.core.rules import usb_exempt
from bop.core.wake import ESSENTIAL_CONTROLLERS, is_usb_wakeup_source, usb_devices_for_pci

LOGGER = logging.getLogger(__name__)

PLATFORM_PROFILE = "/sys/firmware/acpi/platform_profile"
ASPM_POLICY = "/sys/module/pcie_aspm/parameters/policy"
HDA_PARAMS = "/sys/module/snd_hda_intel/parameters"
NMI_WATCHDOG = "/proc/sys/kernel/nmi_watchdog"
DIRTY_WRITEBACK = "/proc/sys/vm/dirty_writeback_centisecs"
CPU_BOOST = "/sys/devices/system/cpu/cpufreq/boost"
SERVICES_TO_DISABLE = ("tlp.service", "power-profiles-daemon.service")
AUDIO_MODPROBE_FILE = "bop-audio.conf"
ABM_TARGET = 3
DIRTY_WRITEBACK_TARGET = 1500


class PolicyMode(str, Enum):
    NORMAL = "normal"
    AGGRESSIVE = "aggressive"
    REDUCED = "reduced"


def _param_key(param: str) -> str:
    return param.split("=", 1)[0]


def _as_int(value: str | None) -> int | None:
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


class PlanBuilder:
    def __init__(self, fs: FsRoot, *, systemctl: Systemctl | None = None) -> None:
        self.fs = fs
        self.systemctl = systemctl or Systemctl()

    def build(self, hw: HardwareView, mode: PolicyMode = PolicyMode.NORMAL) -> ApplyPlan:
        aggressive = mode is PolicyMode.AGGRESSIVE
        writes: list[PlannedWrite] = []
        modprobe: list[ModprobeConfig] = []

        writes.extend(self._cpu_epp(hw, aggressive))
        writes.extend(self._platform_profile(hw))
        writes.extend(self._aspm(hw, aggressive))
        writes.extend(self._pci_runtime_pm(hw))
        writes.extend(self._usb_autosuspend(hw, aggressive))
        audio = self._audio(hw)
        writes.extend(audio)
        writes.extend(self._gpu_dpm(hw))
        writes.extend(self._sysctl(hw))
        if aggressive:
            writes.extend(self._boost(hw))

        if mode is PolicyMode.REDUCED:
            plan = ApplyPlan(sysfs_writes=tuple(writes), systemd_service=bool(writes))
        else:
            if audio:
                modprobe.append(
                    ModprobeConfig(
                        filename=AUDIO_MODPROBE_FILE,
                        content="# Managed by bop\noptions snd_hda_intel power_save=1 power_save_controller=Y\n",
                    )
                )
            plan = ApplyPlan(
                sysfs_writes=tuple(writes),
                kernel_params=tuple(self._kernel_params(hw)),
                services_to_disable=tuple(
                    unit for unit in SERVICES_TO_DISABLE if self.systemctl.is_active_or_enabled(unit)
                ),
                acpi_wakeup_disable=tuple(self._wakeup(hw)),
                systemd_service=bool(writes),
                modprobe_configs=tuple(modprobe),
            )
        LOGGER.debug(
            "%s plan: %d sysfs writes, %d kernel params, %d services, %d wake sources",
            mode.value,
            len(plan.sysfs_writes),
            len(plan.kernel_params),
            len(plan.services_to_disable),
            len(plan.acpi_wakeup_disable),
        )
        return plan

    def _write(self, path: str, target: str, description: str) -> list[PlannedWrite]:
        if not self.fs.exists(path):
            return []
        if self.fs.read_optional(path) == target:
            return []
        return [PlannedWrite(path=path, value=target, description=description)]

    def _cpu_epp(self, hw: HardwareView, aggressive: bool) -> list[PlannedWrite]:
        target = "power" if aggressive else "balance_power"
        if hw.cpu.epp_available and target not in hw.cpu.epp_available:
            return []
        writes: list[PlannedWrite] = []
        for core in hw.cpu.cores:
            path = f"/{CPU_BASE}/cpu{core}/cpufreq/energy_performance_preference"
            writes.extend(self._write(path, target, f"Set cpu{core} EPP to {target}"))
        return writes

    def _platform_profile(self, hw: HardwareView) -> list[PlannedWrite]:
        choices = hw.platform.platform_profiles_available
        if choices and "low-power" not in choices:
            return []
        return self._write(PLATFORM_PROFILE, "low-power", "Set platform profile to low-power")

    def _aspm(self, hw: HardwareView, aggressive: bool) -> list[PlannedWrite]:
        target = "powersupersave" if aggressive else "powersave"
        available = hw.pci.aspm_policies_available
        if available and target not in available:
            return []
        if hw.pci.aspm_policy == target:
            return []
        return self._write(ASPM_POLICY, target, f"Set PCIe ASPM policy to {target}")

    def _pci_runtime_pm(self, hw: HardwareView) -> list[PlannedWrite]:
        writes: list[PlannedWrite] = []
        for dev in sorted(hw.pci.devices, key=lambda d: d.address):
            if dev.runtime_pm is None or dev.runtime_pm == "auto":
                continue
            path = f"/{PCI_BASE}/{dev.address}/power/control"
            writes.extend(self._write(path, "auto", f"Enable runtime PM for PCI {dev.address}"))
        return writes

    def _usb_autosuspend(self, hw: HardwareView, aggressive: bool) -> list[PlannedWrite]:
        writes: list[PlannedWrite] = []
        for dev in sorted(hw.usb, key=lambda d: d.name):
            if dev.control is None or dev.control == "auto":
                continue
            if not aggressive and usb_exempt(dev.product):
                continue
            path = f"/{USB_BASE}/{dev.name}/power/control"
            writes.extend(self._write(path, "auto", f"Enable autosuspend for USB {dev.name} ({dev.label})"))
        return writes

    def _audio(self, hw: HardwareView) -> list[PlannedWrite]:
        writes: list[PlannedWrite] = []
        if hw.audio.power_save is not None and hw.audio.power_save != "1":
            writes.extend(self._write(f"{HDA_PARAMS}/power_save", "1", "Enable HDA audio power save"))
        if hw.audio.power_save_controller == "N":
            writes.extend(
                self._write(f"{HDA_PARAMS}/power_save_controller", "Y", "Enable HDA controller power save")
            )
        return writes

    def _gpu_dpm(self, hw: HardwareView) -> list[PlannedWrite]:
        if not hw.gpu.is_amd() or hw.gpu.card_path is None:
            return []
        if hw.gpu.dpm_level is None or hw.gpu.dpm_level == "auto":
            return []
        path = f"/{hw.gpu.card_path}/power_dpm_force_performance_level"
        return self._write(path, "auto", "Set AMD GPU DPM level to auto")

    def _sysctl(self, hw: HardwareView) -> list[PlannedWrite]:
        writes: list[PlannedWrite] = []
        if hw.sysctl.nmi_watchdog == "1":
            writes.extend(self._write(NMI_WATCHDOG, "0", "Disable NMI watchdog"))
        writeback = _as_int(hw.sysctl.dirty_writeback_centisecs)
        if writeback is not None and writeback < DIRTY_WRITEBACK_TARGET:
            writes.extend(
                self._write(DIRTY_WRITEBACK, str(DIRTY_WRITEBACK_TARGET), "Lengthen dirty page writeback interval")
            )
        return writes

    def _boost(self, hw: HardwareView) -> list[PlannedWrite]:
        if not (hw.cpu.has_boost and hw.cpu.boost_enabled):
            return []
        return self._write(CPU_BOOST, "0", "Disable CPU boost")

    def _kernel_params(self, hw: HardwareView) -> list[str]:
        targets = ["acpi.ec_no_wakeup=1", "rtc_cmos.use_acpi_alarm=1"]
        params = [p for p in targets if hw.kernel_param_value(_param_key(p)) != p.split("=", 1)[1]]
        if hw.gpu.is_amd():
            current = _as_int(hw.kernel_param_value("amdgpu.abmlevel"))
            if current is None or current < ABM_TARGET:
                params.append(f"amdgpu.abmlevel={ABM_TARGET}")
        return params

    def _wakeup(self, hw: HardwareView) -> list[str]:
        devices: list[str] = []
        for source in hw.platform.acpi_wakeup_sources:
            if not source.enabled or not is_usb_wakeup_source(source.device):
                continue
            if source.device in ESSENTIAL_CONTROLLERS:
                continue
            if usb_devices_for_pci(self.fs, source.pci_address):
                continue
            devices.append(source.device)
        return devices


def build_plan(
    hw: HardwareView,
    fs: FsRoot,
    mode: PolicyMode = PolicyMode.NORMAL,
    *,
    systemctl: Systemctl | None = None,
) -> ApplyPlan:
    return PlanBuilder(fs, systemctl=systemctl).build(hw, mode)
