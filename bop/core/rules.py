"""Audit rule catalogue.

Each rule is a plain function ``(HardwareView, FsRoot) -> list[Finding]``.
Thresholds, weights and impact strings are estimates measured on real
laptops; they are tuning data, not contracts.
"""

from __future__ import annotations

from collections.abc import Callable

from bop.core import commands
from bop.core.commands import Systemctl
from bop.core.fsroot import FsRoot
from bop.core.hardware import HardwareView
from bop.core.model import Finding, Severity
from bop.core.wake import ESSENTIAL_CONTROLLERS, usb_devices_for_pci

Rule = Callable[[HardwareView, FsRoot], list[Finding]]

EPP_PATH = "cpu*/cpufreq/energy_performance_preference"
PLATFORM_PROFILE_PATH = "/sys/firmware/acpi/platform_profile"
ASPM_PATH = "/sys/module/pcie_aspm/parameters/policy"
HDA_POWER_SAVE = "/sys/module/snd_hda_intel/parameters/power_save"
HDA_POWER_SAVE_CONTROLLER = "/sys/module/snd_hda_intel/parameters/power_save_controller"

CONFLICTING_SERVICES = (
    ("tlp.service", "TLP conflicts with amd-pstate on AMD systems"),
    ("power-profiles-daemon.service", "power-profiles-daemon conflicts with direct platform_profile management"),
    ("thermald.service", "thermald is Intel-specific and can conflict with AMD thermal management"),
)
NOTABLE_SERVICES = (
    ("docker.service", "Docker daemon (~0.2W idle); development tool, not recommending disable"),
    ("containerd.service", "Container runtime (~0.1W idle); often needed for development"),
)
USB_INPUT_KEYWORDS = ("keyboard", "mouse", "trackpad", "touchpad")
USB_EXPANSION_KEYWORDS = ("expansion", "displayport", "hdmi")


def _cpu(hw: HardwareView, aggressive: bool) -> list[Finding]:
    findings: list[Finding] = []
    epp = hw.cpu.epp
    if epp == "performance":
        findings.append(
            Finding(Severity.HIGH, "CPU", "EPP set to performance - maximum power consumption",
                    current=epp, recommended="balance_power", impact="~2-3W savings",
                    path=EPP_PATH, weight=8)
        )
    elif epp == "balance_performance":
        findings.append(
            Finding(Severity.MEDIUM, "CPU", "EPP at balance_performance - not optimal for battery",
                    current=epp, recommended="balance_power", impact="~1-3W savings",
                    path=EPP_PATH, weight=6)
        )
    elif epp == "balance_power" and aggressive:
        findings.append(
            Finding(Severity.LOW, "CPU", "EPP at balance_power - 'power' trades more latency for battery",
                    current=epp, recommended="power", impact="~0.3-0.8W additional savings",
                    path=EPP_PATH, weight=2)
        )
    elif epp is not None and epp not in ("balance_power", "power"):
        findings.append(
            Finding(Severity.INFO, "CPU", f"Unusual EPP value: {epp}",
                    current=epp, recommended="balance_power", impact="Unknown", weight=1)
        )

    profile = hw.platform.platform_profile
    if profile == "performance":
        findings.append(
            Finding(Severity.HIGH, "CPU", "Platform profile set to performance",
                    current=profile, recommended="low-power",
                    impact="~1-2W savings at idle, lower TDP cap", path=PLATFORM_PROFILE_PATH, weight=7)
        )
    elif profile == "balanced":
        findings.append(
            Finding(Severity.LOW, "CPU", "Platform profile at balanced - could save more on battery",
                    current=profile, recommended="low-power", impact="~0.5-1W savings",
                    path=PLATFORM_PROFILE_PATH, weight=3)
        )

    governor = hw.cpu.governor
    if governor is not None and hw.cpu.is_amd_pstate() and governor != "powersave":
        findings.append(
            Finding(Severity.MEDIUM, "CPU", f"Governor '{governor}' suboptimal with amd-pstate",
                    current=governor, recommended="powersave",
                    impact="amd-pstate uses EPP for power/perf balance; powersave governor is correct",
                    path="cpu*/cpufreq/scaling_governor", weight=4)
        )

    if hw.cpu.is_amd() and hw.cpu.scaling_driver == "acpi-cpufreq":
        findings.append(
            Finding(Severity.HIGH, "CPU",
                    f"Scaling driver {hw.cpu.scaling_driver} in use - EPP unavailable",
                    current=hw.cpu.scaling_driver, recommended="amd-pstate-epp",
                    impact="~2-4W savings from firmware-guided frequency selection",
                    path="cpu*/cpufreq/scaling_driver", weight=8)
        )
    if hw.cpu.pstate_mode == "active":
        findings.append(
            Finding(Severity.INFO, "CPU", "amd-pstate in active mode",
                    current="active", recommended="active",
                    impact="EPP hints are honoured; worth ~1-2W over passive mode", weight=0)
        )

    if aggressive and hw.cpu.has_boost and hw.cpu.boost_enabled:
        findings.append(
            Finding(Severity.LOW, "CPU", "CPU boost enabled - short bursts draw peak power",
                    current="1", recommended="0", impact="~1W savings under bursty load",
                    path="/sys/devices/system/cpu/cpufreq/boost", weight=2)
        )
    return findings


def cpu_power(hw: HardwareView, fs: FsRoot) -> list[Finding]:
    return _cpu(hw, aggressive=False)


def cpu_power_aggressive(hw: HardwareView, fs: FsRoot) -> list[Finding]:
    return _cpu(hw, aggressive=True)


def kernel_params(hw: HardwareView, fs: FsRoot) -> list[Finding]:
    findings: list[Finding] = []
    if not hw.has_kernel_param("acpi.ec_no_wakeup"):
        findings.append(
            Finding(Severity.HIGH, "Kernel", "EC wakeup not disabled - causes high sleep drain",
                    current="unset", recommended="acpi.ec_no_wakeup=1",
                    impact="~5-7% sleep drain reduction", path="/proc/cmdline", weight=9)
        )
    elif hw.kernel_param_value("acpi.ec_no_wakeup") != "1":
        findings.append(
            Finding(Severity.MEDIUM, "Kernel", "acpi.ec_no_wakeup not set to 1",
                    current=hw.kernel_param_value("acpi.ec_no_wakeup") or "",
                    recommended="acpi.ec_no_wakeup=1",
                    impact="~5-7% sleep drain reduction", path="/proc/cmdline", weight=7)
        )

    if not hw.has_kernel_param("rtc_cmos.use_acpi_alarm"):
        findings.append(
            Finding(Severity.MEDIUM, "Kernel", "RTC ACPI alarm not enabled - prevents deepest sleep states",
                    current="unset", recommended="rtc_cmos.use_acpi_alarm=1",
                    impact="Enables deeper CPU sleep states", path="/proc/cmdline", weight=5)
        )

    if hw.kernel_param_value("nvme_core.default_ps_max_latency_us") == "0":
        findings.append(
            Finding(Severity.MEDIUM, "Kernel", "NVMe APST disabled - drive stays in highest power state",
                    current="nvme_core.default_ps_max_latency_us=0",
                    recommended="Remove parameter (let APST work normally)",
                    impact="~0.5-1W savings from NVMe power state transitions",
                    path="/proc/cmdline", weight=5)
        )

    if hw.gpu.is_amd():
        abm = hw.kernel_param_value("amdgpu.abmlevel")
        if abm is None:
            findings.append(
                Finding(Severity.MEDIUM, "Kernel", "AMD Adaptive Backlight Management not enabled",
                        current="unset (level 0)", recommended="amdgpu.abmlevel=3",
                        impact="~0.5-1W display power saving", path="/proc/cmdline", weight=5)
            )
        elif _as_int(abm) < 3:
            findings.append(
                Finding(Severity.LOW, "Kernel", "ABM level below recommended",
                        current=f"amdgpu.abmlevel={abm}", recommended="amdgpu.abmlevel=3",
                        impact="Higher levels save more display power", path="/proc/cmdline", weight=3)
            )
    return findings


def gpu_power(hw: HardwareView, fs: FsRoot) -> list[Finding]:
    if not hw.gpu.is_amd():
        return []
    findings: list[Finding] = []
    dpm = hw.gpu.dpm_level
    if dpm is not None and dpm != "auto":
        findings.append(
            Finding(Severity.MEDIUM, "GPU", f"GPU DPM level '{dpm}' instead of auto",
                    current=dpm, recommended="auto", impact="GPU may not enter low-power states",
                    path="power_dpm_force_performance_level", weight=5)
        )
    state = hw.gpu.dgpu_power_state
    if state is not None and state != "D3cold":
        findings.append(
            Finding(Severity.MEDIUM, "GPU", f"Discrete GPU in {state} instead of D3cold",
                    current=state, recommended="D3cold", impact="~5-8W savings when dGPU is idle",
                    path="power_state", weight=7)
        )
    return findings


def _pci(hw: HardwareView, aggressive: bool) -> list[Finding]:
    findings: list[Finding] = []
    target = "powersupersave" if aggressive else "powersave"
    policy = hw.pci.aspm_policy
    if policy == "default":
        findings.append(
            Finding(Severity.MEDIUM, "PCIe", "ASPM policy at 'default' - not using link sleep states",
                    current=policy, recommended=target,
                    impact="~0.5-1W savings from PCIe link power management", path=ASPM_PATH, weight=6)
        )
    elif policy == "performance":
        findings.append(
            Finding(Severity.HIGH, "PCIe", "ASPM disabled (performance mode) - PCIe links always active",
                    current=policy, recommended=target,
                    impact="~1-2W savings from PCIe link power management", path=ASPM_PATH, weight=8)
        )
    elif policy == "powersave" and aggressive:
        findings.append(
            Finding(Severity.LOW, "PCIe",
                    "ASPM at powersave - powersupersave enables deeper L1.1/L1.2 substates",
                    current=policy, recommended="powersupersave",
                    impact="~0.2-0.5W additional savings (may cause WiFi/NVMe issues)",
                    path=ASPM_PATH, weight=3)
        )

    non_auto = hw.pci.devices_without_runtime_pm()
    if non_auto:
        findings.append(
            Finding(Severity.MEDIUM, "PCIe",
                    f"{len(non_auto)}/{len(hw.pci.devices)} PCI devices not using runtime power management",
                    current=f"{len(non_auto)} devices set to 'on'", recommended="All devices set to 'auto'",
                    impact="~0.5W savings from idle device power gating",
                    path="/sys/bus/pci/devices/*/power/control", weight=5)
        )
    return findings


def pci_power(hw: HardwareView, fs: FsRoot) -> list[Finding]:
    return _pci(hw, aggressive=False)


def pci_power_aggressive(hw: HardwareView, fs: FsRoot) -> list[Finding]:
    return _pci(hw, aggressive=True)


def usb_exempt(product: str | None) -> bool:
    """Input devices and expansion cards are kept awake outside aggressive mode."""
    lowered = (product or "").lower()
    return any(word in lowered for word in USB_INPUT_KEYWORDS + USB_EXPANSION_KEYWORDS)


def _usb(hw: HardwareView, aggressive: bool) -> list[Finding]:
    tracked = [dev for dev in hw.usb if dev.control is not None]
    offenders = [
        dev for dev in tracked
        if dev.control != "auto" and (aggressive or not usb_exempt(dev.product))
    ]
    if not offenders:
        return []
    impact = (
        "Power savings from idle USB devices (may cause input latency)"
        if aggressive
        else "Minor power savings from idle USB devices"
    )
    return [
        Finding(Severity.LOW, "USB", f"{len(offenders)}/{len(tracked)} USB devices not using autosuspend",
                current=f"{len(offenders)} devices set to 'on'", recommended="All devices set to 'auto'",
                impact=impact, path="/sys/bus/usb/devices/*/power/control", weight=2)
    ]


def usb_power(hw: HardwareView, fs: FsRoot) -> list[Finding]:
    return _usb(hw, aggressive=False)


def usb_power_aggressive(hw: HardwareView, fs: FsRoot) -> list[Finding]:
    return _usb(hw, aggressive=True)


def audio(hw: HardwareView, fs: FsRoot) -> list[Finding]:
    findings: list[Finding] = []
    power_save = hw.audio.power_save
    if power_save == "0":
        findings.append(
            Finding(Severity.LOW, "Audio", "HDA Intel power save disabled",
                    current="0 (disabled)", recommended="1 (1 second timeout)",
                    impact="~0.1-0.3W savings when audio idle", path=HDA_POWER_SAVE, weight=2)
        )
    elif power_save is not None and power_save != "1":
        findings.append(
            Finding(Severity.INFO, "Audio", f"HDA power_save set to {power_save} (non-standard)",
                    current=power_save, recommended="1", impact="Standard value is 1 second",
                    path=HDA_POWER_SAVE, weight=1)
        )
    if hw.audio.power_save_controller == "N":
        findings.append(
            Finding(Severity.LOW, "Audio", "HDA controller power save disabled",
                    current="N (disabled)", recommended="Y (enabled)",
                    impact="Controller stays powered when idle", path=HDA_POWER_SAVE_CONTROLLER, weight=2)
        )
    return findings


def network_power(hw: HardwareView, fs: FsRoot) -> list[Finding]:
    iface = hw.network.wifi_interface
    if iface is None:
        return []
    result = commands.run_command(["iw", "dev", iface, "get", "power_save"])
    if result is None:
        return [
            Finding(Severity.INFO, "Network", "Could not check WiFi power save (iw not available)",
                    current="unknown", recommended="on", impact="~0.5W if disabled", weight=1)
        ]
    if "off" in (result.stdout or ""):
        return [
            Finding(Severity.MEDIUM, "Network", "WiFi power save disabled",
                    current="off", recommended="on", impact="~0.5W savings",
                    path=f"iw dev {iface} set power_save on", weight=5)
        ]
    return []


def sleep(hw: HardwareView, fs: FsRoot) -> list[Finding]:
    findings: list[Finding] = []
    unnecessary = [
        src.device
        for src in hw.platform.acpi_wakeup_sources
        if src.enabled
        and src.device not in ESSENTIAL_CONTROLLERS
        and not usb_devices_for_pci(fs, src.pci_address)
    ]
    if unnecessary:
        findings.append(
            Finding(Severity.MEDIUM, "Sleep", f"{len(unnecessary)} unnecessary ACPI wakeup sources enabled",
                    current=f"Enabled: {', '.join(unnecessary)}",
                    recommended="Disable all except XHC0 (internal keyboard/BT)",
                    impact="Reduces spurious wakeups during sleep", path="/proc/acpi/wakeup", weight=6)
        )
    mem_sleep = hw.platform.mem_sleep
    if mem_sleep is not None and mem_sleep != "s2idle":
        findings.append(
            Finding(Severity.INFO, "Sleep", "System using deep sleep instead of s2idle",
                    current=mem_sleep, recommended="s2idle (for AMD platforms)",
                    impact="s2idle is recommended for modern AMD; deep may work but has less testing",
                    path="/sys/power/mem_sleep", weight=2)
        )
    return findings


def services(hw: HardwareView, fs: FsRoot) -> list[Finding]:
    systemctl = Systemctl()
    findings: list[Finding] = []
    for unit, reason in CONFLICTING_SERVICES:
        if systemctl.is_active(unit):
            findings.append(
                Finding(Severity.HIGH, "Services", f"{unit} is active - {reason}",
                        current="active (running)", recommended="disable and stop",
                        impact="Actively harmful to power optimization", weight=8)
            )
        elif systemctl.is_enabled(unit):
            findings.append(
                Finding(Severity.MEDIUM, "Services", f"{unit} is enabled - {reason}",
                        current="enabled (not running)", recommended="disable",
                        impact="Will interfere on next boot", weight=5)
            )
    for unit, note in NOTABLE_SERVICES:
        if systemctl.is_active(unit):
            findings.append(
                Finding(Severity.INFO, "Services", f"{unit} is running",
                        current="active", recommended=note, impact="Minor power impact", weight=0)
            )
    return findings


def display(hw: HardwareView, fs: FsRoot) -> list[Finding]:
    findings: list[Finding] = []
    for backlight in hw.backlights:
        pct = backlight.percent
        if pct is not None and int(pct) > 70:
            findings.append(
                Finding(Severity.INFO, "Display", f"Backlight at {int(pct)}% - reducing saves significant power",
                        current=f"{int(pct)}%", recommended="30-50% for indoor use",
                        impact="Display is often the largest power consumer",
                        path=f"/sys/class/backlight/{backlight.name}/brightness", weight=0)
            )
    for connector in hw.connectors:
        if "eDP" in connector.name and connector.status == "connected":
            findings.append(
                Finding(Severity.INFO, "Display", "Consider reducing display refresh rate to 60Hz on battery",
                        impact="~1W savings on high refresh rate panels",
                        path=f"/sys/class/drm/{connector.name}/status", weight=0)
            )
            break
    if hw.gpu.is_amd() and hw.has_kernel_param("amdgpu.dcdebugmask"):
        findings.append(
            Finding(Severity.INFO, "Display", "Panel Self-Refresh may be disabled (amdgpu.dcdebugmask set)",
                    current=hw.kernel_param_value("amdgpu.dcdebugmask") or "",
                    recommended="Remove amdgpu.dcdebugmask once PSR bugs are fixed",
                    impact="~0.5-1.5W potential savings when PSR works correctly", weight=0)
        )
    return findings


def sysctl(hw: HardwareView, fs: FsRoot) -> list[Finding]:
    findings: list[Finding] = []
    if hw.sysctl.nmi_watchdog == "1":
        findings.append(
            Finding(Severity.MEDIUM, "Kernel",
                    "NMI watchdog enabled - generates interrupts that prevent deep C-states",
                    current="1", recommended="0", impact="~0.1-0.5W savings",
                    path="/proc/sys/kernel/nmi_watchdog", weight=4)
        )
    writeback = hw.sysctl.dirty_writeback_centisecs
    if writeback is not None and _as_int(writeback) < 1500:
        findings.append(
            Finding(Severity.LOW, "Kernel", "Disk writeback interval too frequent - wakes storage unnecessarily",
                    current=writeback, recommended="1500",
                    impact="Reduces storage wakeups (minor savings on NVMe)",
                    path="/proc/sys/vm/dirty_writeback_centisecs", weight=2)
        )
    return findings


def _as_int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        return 0


RULES: dict[str, Rule] = {
    "kernel_params": kernel_params,
    "cpu_power": cpu_power,
    "cpu_power_aggressive": cpu_power_aggressive,
    "gpu_power": gpu_power,
    "pci_power": pci_power,
    "pci_power_aggressive": pci_power_aggressive,
    "usb_power": usb_power,
    "usb_power_aggressive": usb_power_aggressive,
    "audio": audio,
    "network_power": network_power,
    "sleep": sleep,
    "services": services,
    "display": display,
    "sysctl": sysctl,
}
