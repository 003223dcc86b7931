"""Hardware detection: a read-only projection of sysfs, procfs and DMI.

Absent or permission-denied files are treated as "feature not present";
any other read failure propagates as :class:`SysfsReadError`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from bop.core.fsroot import FsRoot

LOGGER = logging.getLogger(__name__)

CPU_BASE = "sys/devices/system/cpu"
PCI_BASE = "sys/bus/pci/devices"
USB_BASE = "sys/bus/usb/devices"
DRM_BASE = "sys/class/drm"
NET_BASE = "sys/class/net"
POWER_SUPPLY_BASE = "sys/class/power_supply"
BACKLIGHT_BASE = "sys/class/backlight"
ACPI_WAKEUP = "proc/acpi/wakeup"
AMD_PCI_VENDOR = "0x1002"


def parse_bracketed(text: str) -> tuple[str | None, tuple[str, ...]]:
    """Split ``"a [b] c"`` into the active choice ``b`` and all choices."""
    active: str | None = None
    choices: list[str] = []
    for word in text.split():
        if word.startswith("[") and word.endswith("]") and len(word) > 2:
            word = word[1:-1]
            if active is None:
                active = word
        if word not in choices:
            choices.append(word)
    return active, tuple(choices)


def _cpu_index(name: str) -> int | None:
    if name.startswith("cpu") and name[3:].isdigit():
        return int(name[3:])
    return None


def _read_int(fs: FsRoot, rel: str) -> int | None:
    value = fs.read_optional(rel)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


@dataclass(frozen=True)
class DmiInfo:
    board_vendor: str | None = None
    board_name: str | None = None
    product_name: str | None = None
    product_family: str | None = None
    bios_version: str | None = None

    def is_framework(self) -> bool:
        return "Framework" in (self.board_vendor or "")

    def is_framework_16(self) -> bool:
        return self.is_framework() and (
            "16" in (self.product_name or "") or "16" in (self.board_name or "")
        )


@dataclass(frozen=True)
class CpuInfo:
    model_name: str | None = None
    vendor: str | None = None
    family: int | None = None
    model: int | None = None
    scaling_driver: str | None = None
    governor: str | None = None
    epp: str | None = None
    epp_available: tuple[str, ...] = ()
    cores: tuple[int, ...] = ()
    has_boost: bool = False
    boost_enabled: bool = False
    pstate_mode: str | None = None

    @property
    def online_cpus(self) -> int:
        return len(self.cores)

    def is_amd(self) -> bool:
        return self.vendor == "AuthenticAMD"

    def is_amd_pstate(self) -> bool:
        return (self.scaling_driver or "").startswith("amd-pstate")

    def is_zen4(self) -> bool:
        return self.is_amd() and self.family == 25 and (self.model or 0) >= 0x60


@dataclass(frozen=True)
class GpuInfo:
    vendor: str | None = None
    driver: str | None = None
    card_path: str | None = None
    dpm_level: str | None = None
    abm_level: int | None = None
    has_abm: bool = False
    dgpu_card_path: str | None = None
    dgpu_power_state: str | None = None

    def is_amd(self) -> bool:
        return self.vendor == AMD_PCI_VENDOR or self.driver == "amdgpu"


@dataclass(frozen=True)
class BatteryInfo:
    present: bool = False
    supply_name: str | None = None
    status: str | None = None
    capacity_percent: int | None = None
    energy_now_uwh: int | None = None
    energy_full_uwh: int | None = None
    energy_full_design_uwh: int | None = None
    power_now_uw: int | None = None
    charge_now_uah: int | None = None
    charge_full_uah: int | None = None
    charge_full_design_uah: int | None = None
    current_now_ua: int | None = None
    voltage_now_uv: int | None = None
    cycle_count: int | None = None

    @property
    def health_percent(self) -> float | None:
        full, design = self.energy_full_uwh, self.energy_full_design_uwh
        if full is None or design is None:
            full, design = self.charge_full_uah, self.charge_full_design_uah
        if full is None or not design:
            return None
        return full / design * 100.0

    def power_watts(self) -> float | None:
        if self.power_now_uw is not None:
            return self.power_now_uw / 1_000_000
        if self.current_now_ua is not None and self.voltage_now_uv is not None:
            return self.current_now_ua * self.voltage_now_uv / 1e12
        return None

    def energy_wh(self) -> float | None:
        if self.energy_now_uwh is not None:
            return self.energy_now_uwh / 1_000_000
        if self.charge_now_uah is not None and self.voltage_now_uv is not None:
            return self.charge_now_uah * self.voltage_now_uv / 1e12
        return None

    def usable_capacity_wh(self) -> float | None:
        if self.energy_full_uwh is not None:
            return self.energy_full_uwh / 1_000_000
        if self.charge_full_uah is not None and self.voltage_now_uv is not None:
            return self.charge_full_uah * self.voltage_now_uv / 1e12
        return None

    def is_discharging(self) -> bool:
        return self.status == "Discharging"


@dataclass(frozen=True)
class AcInfo:
    found: bool = False
    supply_name: str | None = None
    online: bool = False

    def is_on_ac(self) -> bool:
        return self.found and self.online

    def is_on_battery(self) -> bool:
        return self.found and not self.online


@dataclass(frozen=True)
class PciDevice:
    address: str
    class_code: str | None = None
    vendor: str | None = None
    device: str | None = None
    driver: str | None = None
    runtime_pm: str | None = None
    runtime_status: str | None = None


@dataclass(frozen=True)
class PciInfo:
    devices: tuple[PciDevice, ...] = ()
    aspm_policy: str | None = None
    aspm_policies_available: tuple[str, ...] = ()

    def devices_without_runtime_pm(self) -> list[PciDevice]:
        return [d for d in self.devices if d.runtime_pm is not None and d.runtime_pm != "auto"]


@dataclass(frozen=True)
class UsbDevice:
    name: str
    product: str | None = None
    manufacturer: str | None = None
    id_vendor: str | None = None
    id_product: str | None = None
    control: str | None = None

    @property
    def label(self) -> str:
        parts = [p for p in (self.manufacturer, self.product) if p]
        return " ".join(parts) or self.name


@dataclass(frozen=True)
class NetworkInfo:
    wifi_interface: str | None = None
    wifi_driver: str | None = None


@dataclass(frozen=True)
class AcpiWakeupSource:
    device: str
    sysfs_node: str | None
    enabled: bool

    @property
    def pci_address(self) -> str | None:
        if self.sysfs_node and self.sysfs_node.startswith("pci:"):
            return self.sysfs_node[len("pci:"):]
        return None


@dataclass(frozen=True)
class PlatformInfo:
    platform_profile: str | None = None
    platform_profiles_available: tuple[str, ...] = ()
    sleep_states_available: tuple[str, ...] = ()
    mem_sleep: str | None = None
    mem_sleep_available: tuple[str, ...] = ()
    acpi_wakeup_sources: tuple[AcpiWakeupSource, ...] = ()

    def has_s2idle(self) -> bool:
        return "mem" in self.sleep_states_available and self.mem_sleep == "s2idle"


@dataclass(frozen=True)
class AudioInfo:
    power_save: str | None = None
    power_save_controller: str | None = None


@dataclass(frozen=True)
class SysctlInfo:
    nmi_watchdog: str | None = None
    dirty_writeback_centisecs: str | None = None


@dataclass(frozen=True)
class Backlight:
    name: str
    brightness: int | None = None
    max_brightness: int | None = None

    @property
    def percent(self) -> float | None:
        if self.brightness is None or not self.max_brightness:
            return None
        return self.brightness / self.max_brightness * 100.0


@dataclass(frozen=True)
class DisplayConnector:
    name: str
    status: str | None = None


@dataclass(frozen=True)
class HardwareView:
    dmi: DmiInfo = field(default_factory=DmiInfo)
    cpu: CpuInfo = field(default_factory=CpuInfo)
    gpu: GpuInfo = field(default_factory=GpuInfo)
    battery: BatteryInfo = field(default_factory=BatteryInfo)
    ac: AcInfo = field(default_factory=AcInfo)
    pci: PciInfo = field(default_factory=PciInfo)
    usb: tuple[UsbDevice, ...] = ()
    network: NetworkInfo = field(default_factory=NetworkInfo)
    platform: PlatformInfo = field(default_factory=PlatformInfo)
    audio: AudioInfo = field(default_factory=AudioInfo)
    sysctl: SysctlInfo = field(default_factory=SysctlInfo)
    backlights: tuple[Backlight, ...] = ()
    connectors: tuple[DisplayConnector, ...] = ()
    kernel_cmdline: str = ""

    def has_kernel_param(self, name: str) -> bool:
        prefix = f"{name}="
        return any(tok == name or tok.startswith(prefix) for tok in self.kernel_cmdline.split())

    def kernel_param_value(self, name: str) -> str | None:
        prefix = f"{name}="
        for tok in self.kernel_cmdline.split():
            if tok.startswith(prefix):
                return tok[len(prefix):]
        return None


def detect_dmi(fs: FsRoot) -> DmiInfo:
    base = "sys/class/dmi/id"
    return DmiInfo(
        board_vendor=fs.read_optional(f"{base}/board_vendor"),
        board_name=fs.read_optional(f"{base}/board_name"),
        product_name=fs.read_optional(f"{base}/product_name"),
        product_family=fs.read_optional(f"{base}/product_family"),
        bios_version=fs.read_optional(f"{base}/bios_version"),
    )


def detect_cpu(fs: FsRoot) -> CpuInfo:
    fields: dict[str, str] = {}
    cpuinfo = fs.read_optional("proc/cpuinfo") or ""
    for line in cpuinfo.splitlines():
        key, sep, value = line.partition(":")
        if sep:
            fields.setdefault(key.strip(), value.strip())

    def _int(key: str) -> int | None:
        try:
            return int(fields[key])
        except (KeyError, ValueError):
            return None

    cores = sorted(
        idx for idx in (_cpu_index(name) for name in fs.list_dir(CPU_BASE, missing_ok=True)) if idx is not None
    )
    cpufreq = f"{CPU_BASE}/cpu0/cpufreq"
    boost = fs.read_optional(f"{CPU_BASE}/cpufreq/boost")
    available = fs.read_optional(f"{cpufreq}/energy_performance_available_preferences") or ""
    return CpuInfo(
        model_name=fields.get("model name"),
        vendor=fields.get("vendor_id"),
        family=_int("cpu family"),
        model=_int("model"),
        scaling_driver=fs.read_optional(f"{cpufreq}/scaling_driver"),
        governor=fs.read_optional(f"{cpufreq}/scaling_governor"),
        epp=fs.read_optional(f"{cpufreq}/energy_performance_preference"),
        epp_available=tuple(available.split()),
        cores=tuple(cores),
        has_boost=boost is not None,
        boost_enabled=boost == "1",
        pstate_mode=fs.read_optional(f"{CPU_BASE}/amd_pstate/status"),
    )


def detect_gpu(fs: FsRoot) -> GpuInfo:
    cards = [
        name
        for name in fs.list_dir(DRM_BASE, missing_ok=True)
        if name.startswith("card") and "-" not in name and fs.exists(f"{DRM_BASE}/{name}/device")
    ]
    if not cards:
        return GpuInfo()

    card_path = f"{DRM_BASE}/{cards[0]}/device"
    vendor = fs.read_optional(f"{card_path}/vendor")
    driver = fs.read_link_name(f"{card_path}/driver")
    is_amd = vendor == AMD_PCI_VENDOR or driver == "amdgpu"

    dpm_level = None
    abm_level = None
    has_abm = False
    if is_amd:
        dpm_level = fs.read_optional(f"{card_path}/power_dpm_force_performance_level")
        for tok in (fs.read_optional("proc/cmdline") or "").split():
            if tok.startswith("amdgpu.abmlevel="):
                has_abm = True
                try:
                    abm_level = int(tok.split("=", 1)[1])
                except ValueError:
                    abm_level = None
        if not has_abm:
            module_value = _read_int(fs, "sys/module/amdgpu/parameters/abmlevel")
            if module_value is not None:
                abm_level = module_value
                has_abm = True

    dgpu_card_path = None
    dgpu_power_state = None
    for name in cards[1:]:
        state = fs.read_optional(f"{DRM_BASE}/{name}/device/power_state")
        if state is not None:
            dgpu_card_path = f"{DRM_BASE}/{name}/device"
            dgpu_power_state = state
            break

    return GpuInfo(
        vendor=vendor,
        driver=driver,
        card_path=card_path,
        dpm_level=dpm_level,
        abm_level=abm_level,
        has_abm=has_abm,
        dgpu_card_path=dgpu_card_path,
        dgpu_power_state=dgpu_power_state,
    )


def detect_battery(fs: FsRoot) -> BatteryInfo:
    names = [n for n in fs.list_dir(POWER_SUPPLY_BASE, missing_ok=True) if n.startswith("BAT")]
    if not names:
        return BatteryInfo()
    name = names[0]
    base = f"{POWER_SUPPLY_BASE}/{name}"
    supply_type = fs.read_optional(f"{base}/type")
    if supply_type is not None and supply_type != "Battery":
        return BatteryInfo(supply_name=name)

    return BatteryInfo(
        present=fs.read_optional(f"{base}/present") == "1",
        supply_name=name,
        status=fs.read_optional(f"{base}/status"),
        capacity_percent=_read_int(fs, f"{base}/capacity"),
        energy_now_uwh=_read_int(fs, f"{base}/energy_now"),
        energy_full_uwh=_read_int(fs, f"{base}/energy_full"),
        energy_full_design_uwh=_read_int(fs, f"{base}/energy_full_design"),
        power_now_uw=_read_int(fs, f"{base}/power_now"),
        charge_now_uah=_read_int(fs, f"{base}/charge_now"),
        charge_full_uah=_read_int(fs, f"{base}/charge_full"),
        charge_full_design_uah=_read_int(fs, f"{base}/charge_full_design"),
        current_now_ua=_read_int(fs, f"{base}/current_now"),
        voltage_now_uv=_read_int(fs, f"{base}/voltage_now"),
        cycle_count=_read_int(fs, f"{base}/cycle_count"),
    )


def detect_ac(fs: FsRoot) -> AcInfo:
    for name in fs.list_dir(POWER_SUPPLY_BASE, missing_ok=True):
        base = f"{POWER_SUPPLY_BASE}/{name}"
        if fs.read_optional(f"{base}/type") != "Mains":
            continue
        return AcInfo(found=True, supply_name=name, online=fs.read_optional(f"{base}/online") == "1")
    return AcInfo()


def detect_pci(fs: FsRoot) -> PciInfo:
    aspm_policy = None
    aspm_available: tuple[str, ...] = ()
    policy_text = fs.read_optional("sys/module/pcie_aspm/parameters/policy")
    if policy_text is not None:
        aspm_policy, aspm_available = parse_bracketed(policy_text)

    devices = []
    for address in fs.list_dir(PCI_BASE, missing_ok=True):
        base = f"{PCI_BASE}/{address}"
        devices.append(
            PciDevice(
                address=address,
                class_code=fs.read_optional(f"{base}/class"),
                vendor=fs.read_optional(f"{base}/vendor"),
                device=fs.read_optional(f"{base}/device"),
                driver=fs.read_link_name(f"{base}/driver"),
                runtime_pm=fs.read_optional(f"{base}/power/control"),
                runtime_status=fs.read_optional(f"{base}/power/runtime_status"),
            )
        )
    return PciInfo(
        devices=tuple(devices),
        aspm_policy=aspm_policy,
        aspm_policies_available=aspm_available,
    )


def detect_usb(fs: FsRoot) -> tuple[UsbDevice, ...]:
    devices = []
    for name in fs.list_dir(USB_BASE, missing_ok=True):
        if ":" in name:
            continue
        base = f"{USB_BASE}/{name}"
        devices.append(
            UsbDevice(
                name=name,
                product=fs.read_optional(f"{base}/product"),
                manufacturer=fs.read_optional(f"{base}/manufacturer"),
                id_vendor=fs.read_optional(f"{base}/idVendor"),
                id_product=fs.read_optional(f"{base}/idProduct"),
                control=fs.read_optional(f"{base}/power/control"),
            )
        )
    return tuple(devices)


def detect_network(fs: FsRoot) -> NetworkInfo:
    for iface in fs.list_dir(NET_BASE, missing_ok=True):
        if fs.exists(f"{NET_BASE}/{iface}/wireless"):
            return NetworkInfo(
                wifi_interface=iface,
                wifi_driver=fs.read_link_name(f"{NET_BASE}/{iface}/device/driver"),
            )
    return NetworkInfo()


def parse_acpi_wakeup(text: str) -> tuple[AcpiWakeupSource, ...]:
    """Parse ``/proc/acpi/wakeup``; the header row has no status token and is skipped."""
    sources = []
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 3:
            continue
        status = next(
            (p.lstrip("*") for p in parts[1:] if p.lstrip("*") in ("enabled", "disabled")),
            None,
        )
        if status is None:
            continue
        node = parts[-1] if parts[-1].startswith(("pci:", "platform:")) else None
        sources.append(AcpiWakeupSource(device=parts[0], sysfs_node=node, enabled=status == "enabled"))
    return tuple(sources)


def detect_platform(fs: FsRoot) -> PlatformInfo:
    profile = fs.read_optional("sys/firmware/acpi/platform_profile")
    choices_active, choices = parse_bracketed(fs.read_optional("sys/firmware/acpi/platform_profile_choices") or "")
    if profile is None:
        profile = choices_active

    mem_sleep_text = fs.read_optional("sys/power/mem_sleep") or ""
    mem_sleep, mem_sleep_available = parse_bracketed(mem_sleep_text)
    if mem_sleep is None and mem_sleep_available:
        mem_sleep = mem_sleep_available[0]

    return PlatformInfo(
        platform_profile=profile,
        platform_profiles_available=choices,
        sleep_states_available=tuple((fs.read_optional("sys/power/state") or "").split()),
        mem_sleep=mem_sleep,
        mem_sleep_available=mem_sleep_available,
        acpi_wakeup_sources=parse_acpi_wakeup(fs.read_optional(ACPI_WAKEUP) or ""),
    )


def detect_audio(fs: FsRoot) -> AudioInfo:
    base = "sys/module/snd_hda_intel/parameters"
    return AudioInfo(
        power_save=fs.read_optional(f"{base}/power_save"),
        power_save_controller=fs.read_optional(f"{base}/power_save_controller"),
    )


def detect_sysctl(fs: FsRoot) -> SysctlInfo:
    return SysctlInfo(
        nmi_watchdog=fs.read_optional("proc/sys/kernel/nmi_watchdog"),
        dirty_writeback_centisecs=fs.read_optional("proc/sys/vm/dirty_writeback_centisecs"),
    )


def detect_backlights(fs: FsRoot) -> tuple[Backlight, ...]:
    return tuple(
        Backlight(
            name=name,
            brightness=_read_int(fs, f"{BACKLIGHT_BASE}/{name}/brightness"),
            max_brightness=_read_int(fs, f"{BACKLIGHT_BASE}/{name}/max_brightness"),
        )
        for name in fs.list_dir(BACKLIGHT_BASE, missing_ok=True)
    )


def detect_connectors(fs: FsRoot) -> tuple[DisplayConnector, ...]:
    return tuple(
        DisplayConnector(name=name, status=fs.read_optional(f"{DRM_BASE}/{name}/status"))
        for name in fs.list_dir(DRM_BASE, missing_ok=True)
        if name.startswith("card") and "-" in name
    )


def detect_hardware(fs: FsRoot) -> HardwareView:
    view = HardwareView(
        dmi=detect_dmi(fs),
        cpu=detect_cpu(fs),
        gpu=detect_gpu(fs),
        battery=detect_battery(fs),
        ac=detect_ac(fs),
        pci=detect_pci(fs),
        usb=detect_usb(fs),
        network=detect_network(fs),
        platform=detect_platform(fs),
        audio=detect_audio(fs),
        sysctl=detect_sysctl(fs),
        backlights=detect_backlights(fs),
        connectors=detect_connectors(fs),
        kernel_cmdline=fs.read_optional("proc/cmdline") or "",
    )
    LOGGER.debug(
        "detected %s %s, cpu=%s driver=%s",
        view.dmi.board_vendor,
        view.dmi.product_name,
        view.cpu.vendor,
        view.cpu.scaling_driver,
    )
    return view
